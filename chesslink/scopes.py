"""OAuth scopes recognised by the remote API.

Scopes are enumerated with an underscore in place of the wire separator,
so ``Scope.preference_read`` travels as ``preference:read``. The wildcard
scope ``Scope.any`` travels as ``*``.
"""

import re
from enum import Enum
from typing import Iterable

WILDCARD = "*"


class Scope(Enum):
    """Permission scopes an access token can carry."""

    preference_read = "preference_read"
    preference_write = "preference_write"
    email_read = "email_read"
    challenge_read = "challenge_read"
    challenge_write = "challenge_write"
    challenge_bulk = "challenge_bulk"
    study_read = "study_read"
    study_write = "study_write"
    tournament_write = "tournament_write"
    racer_write = "racer_write"
    puzzle_read = "puzzle_read"
    team_read = "team_read"
    team_write = "team_write"
    team_lead = "team_lead"
    msg_write = "msg_write"
    board_play = "board_play"
    bot_play = "bot_play"
    follow_read = "follow_read"
    follow_write = "follow_write"
    engine_read = "engine_read"
    engine_write = "engine_write"
    web_login = "web_login"
    web_mod = "web_mod"
    any = "any"

    @property
    def wire(self) -> str:
        """The scope as sent to and received from the API."""
        if self is Scope.any:
            return WILDCARD
        return self.value.replace("_", ":")

    def to_wire(self) -> str:
        return self.wire

    @classmethod
    def from_wire(cls, text: str) -> "Scope | None":
        """Parse a wire scope string.

        Unknown scopes return None so that tokens minted by a newer API
        version do not break older clients.
        """
        text = text.strip()
        if text == WILDCARD:
            return cls.any
        try:
            scope = cls(text.replace(":", "_"))
        except ValueError:
            return None
        # "any" only has the "*" wire form
        return None if scope is cls.any else scope

    def __str__(self) -> str:
        return self.wire


def parse_scopes(text: str | None) -> list[Scope]:
    """Parse a space or comma separated scope list, skipping unknown entries."""
    if not text:
        return []
    scopes: list[Scope] = []
    for part in re.split(r"[\s,]+", text):
        if not part:
            continue
        scope = Scope.from_wire(part)
        if scope is not None and scope not in scopes:
            scopes.append(scope)
    return scopes


def join_scopes(scopes: Iterable[Scope], sep: str = " ") -> str:
    """Join scopes into their wire form."""
    return sep.join(scope.wire for scope in scopes)
