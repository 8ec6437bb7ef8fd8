"""OAuth2 PKCE authorization for chesslink.

Main Components:
    AuthManager: High-level manager used by the CLI
    PkceAuthorizer: Starts authorization sessions
    PkceSession: One authorization attempt and its state machine
    TokenStore: Encrypted token storage
    TokenSet: Token data structure

Quick Start:
    from chesslink.auth import PkceAuthorizer

    authorizer = PkceAuthorizer(pipeline, client_id="my-app")
    session = await authorizer.begin([Scope.challenge_read])
    print(f"Open {session.url}")
    result = await session.token()
"""

from .authorizer import (
    PkceAuthorizer,
    PkceSession,
    PkceStatus,
    build_authorization_url,
    personal_token_url,
)
from .callback import CallbackError, CallbackResult, LocalhostCallbackServer
from .manager import AuthError, AuthManager, AuthStatus
from .pkce import PkcePair, generate_code_challenge, generate_code_verifier, generate_pkce_pair, generate_state
from .store import TokenDecryptionError, TokenStore, TokenStoreError
from .tokens import TokenSet

__all__ = [
    # Manager (main entry point)
    "AuthManager",
    "AuthStatus",
    "AuthError",
    # Authorizer
    "PkceAuthorizer",
    "PkceSession",
    "PkceStatus",
    "build_authorization_url",
    "personal_token_url",
    # Tokens
    "TokenSet",
    # Storage
    "TokenStore",
    "TokenStoreError",
    "TokenDecryptionError",
    # PKCE
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    "PkcePair",
    # Callback
    "LocalhostCallbackServer",
    "CallbackResult",
    "CallbackError",
]
