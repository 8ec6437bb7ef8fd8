"""Access token data structure.

Access tokens issued by the API are long-lived bearer tokens without a
refresh token, so a TokenSet only tracks the token, its scopes and its
expiry.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..scopes import Scope, parse_scopes


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass
class TokenSet:
    """Bearer token with metadata.

    Attributes:
        access_token: The bearer token
        api_url: Base URL of the API the token was issued by
        token_type: Token type (always "Bearer" in practice)
        expires_at: When the token expires (UTC), if the server said
        scope: Space-separated granted scopes, if the server said
        issued_at: When the token was obtained (UTC)
    """

    access_token: str
    api_url: str
    token_type: str = "Bearer"
    expires_at: datetime | None = None
    scope: str | None = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, buffer_seconds: int = 30) -> bool:
        """True if the token expires within ``buffer_seconds``.

        Tokens without expiry information are treated as valid; the API
        answers 401 if that turns out to be wrong.
        """
        if self.expires_at is None:
            return False
        now = datetime.now(timezone.utc)
        return now >= _aware(self.expires_at) - timedelta(seconds=buffer_seconds)

    @property
    def scopes(self) -> list[Scope]:
        return parse_scopes(self.scope)

    def has_scope(self, scope: Scope) -> bool:
        granted = self.scopes
        return Scope.any in granted or scope in granted

    def get_auth_header(self) -> str:
        # Always "Bearer" per RFC 6750, whatever case the server used
        return f"Bearer {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "api_url": self.api_url,
            "token_type": self.token_type,
            "issued_at": self.issued_at.isoformat(),
        }
        if self.expires_at:
            data["expires_at"] = self.expires_at.isoformat()
        if self.scope:
            data["scope"] = self.scope
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenSet":
        expires_at = None
        if data.get("expires_at"):
            expires_at = _aware(datetime.fromisoformat(data["expires_at"]))

        issued_at = datetime.now(timezone.utc)
        if data.get("issued_at"):
            issued_at = _aware(datetime.fromisoformat(data["issued_at"]))

        return cls(
            access_token=data["access_token"],
            api_url=data["api_url"],
            token_type=data.get("token_type", "Bearer"),
            expires_at=expires_at,
            scope=data.get("scope"),
            issued_at=issued_at,
        )

    @classmethod
    def from_token_response(
        cls,
        response: dict[str, Any],
        api_url: str,
        requested_scopes: list[Scope] | None = None,
    ) -> "TokenSet":
        """Create a TokenSet from a token endpoint response.

        Raises:
            KeyError: If the response has no access_token
            ValueError: If expires_in is not a number
        """
        now = datetime.now(timezone.utc)

        expires_at = None
        if response.get("expires_in") is not None:
            expires_at = now + timedelta(seconds=int(response["expires_in"]))

        scope = response.get("scope")
        if scope is None and requested_scopes:
            scope = " ".join(s.wire for s in requested_scopes)

        return cls(
            access_token=response["access_token"],
            api_url=api_url,
            token_type=response.get("token_type", "Bearer"),
            expires_at=expires_at,
            scope=scope,
            issued_at=now,
        )
