"""Endpoint descriptors.

An EndpointDescriptor is static metadata for one remote operation: verb,
path template, required scope, response shape, body encoding and
pagination. Descriptors are module-level constants shared by every call;
the request pipeline turns a descriptor plus call arguments into a request.
"""

from dataclasses import dataclass
from enum import Enum
from string import Formatter
from typing import Any, Callable, Mapping
from urllib.parse import quote

from .models import Ack, TeamRequest, TVChannels, UserStatus
from .scopes import Scope

NDJSON = "application/x-ndjson"
JSON = "application/json"


class Shape(Enum):
    """Whether a response is one buffered payload or an open NDJSON stream."""

    SINGLE = "single"
    STREAM = "stream"


class BodyEncoding(Enum):
    FORM = "application/x-www-form-urlencoded"
    JSON = "application/json"


class EmptyBody(Enum):
    """How to read an empty 2xx response.

    NONE_MATCH: there is no data for the request.
    ACK: the operation succeeded and has nothing more to say.
    """

    NONE_MATCH = "none_match"
    ACK = "ack"


@dataclass(frozen=True)
class Pagination:
    """Cursor pagination: read ``cursor_field`` from a page, send it as ``cursor_param``."""

    cursor_field: str
    cursor_param: str = "page"


@dataclass(frozen=True)
class EndpointDescriptor:
    """Immutable description of a remote operation."""

    name: str
    method: str
    path: str
    scope: Scope | None = None
    shape: Shape = Shape.SINGLE
    encoding: BodyEncoding = BodyEncoding.FORM
    empty: EmptyBody = EmptyBody.NONE_MATCH
    pagination: Pagination | None = None
    decoder: Callable[[Any], Any] | None = None
    description: str = ""

    @property
    def placeholders(self) -> tuple[str, ...]:
        """Names of the ``{placeholder}`` fields in the path template."""
        return tuple(
            field_name
            for _, field_name, _, _ in Formatter().parse(self.path)
            if field_name
        )

    @property
    def is_write(self) -> bool:
        return self.method.upper() != "GET"

    @property
    def accept(self) -> str:
        return NDJSON if self.shape is Shape.STREAM else JSON

    def resolve_path(self, path_args: Mapping[str, Any] | None = None) -> str:
        """Substitute path placeholders with percent-encoded values.

        Raises:
            ValueError: If a placeholder has no value
        """
        path_args = path_args or {}
        missing = [name for name in self.placeholders if path_args.get(name) in (None, "")]
        if missing:
            raise ValueError(
                f"Endpoint '{self.name}' requires path argument(s): {', '.join(missing)}"
            )
        encoded = {name: quote(str(path_args[name]), safe="") for name in self.placeholders}
        return self.path.format(**encoded)

    def decode(self, payload: Any) -> Any:
        """Decode a JSON payload with this endpoint's decoder (identity if none)."""
        if self.decoder is None:
            return payload
        return self.decoder(payload)


# Account

ACCOUNT = EndpointDescriptor(
    name="account",
    method="GET",
    path="/api/account",
    description="Profile of the token owner",
)

ACCOUNT_EMAIL = EndpointDescriptor(
    name="account-email",
    method="GET",
    path="/api/account/email",
    scope=Scope.email_read,
    description="Email address of the token owner",
)

ACCOUNT_PREFERENCES = EndpointDescriptor(
    name="account-preferences",
    method="GET",
    path="/api/account/preferences",
    scope=Scope.preference_read,
    description="Preferences of the token owner",
)

# Users

USER = EndpointDescriptor(
    name="user",
    method="GET",
    path="/api/user/{username}",
    description="Public profile of a user",
)

USERS_STATUS = EndpointDescriptor(
    name="users-status",
    method="GET",
    path="/api/users/status",
    decoder=UserStatus.from_dict,
    description="Online/playing status of users (query: ids=a,b,c)",
)

USER_GAMES = EndpointDescriptor(
    name="user-games",
    method="GET",
    path="/api/games/user/{username}",
    shape=Shape.STREAM,
    description="Games played by a user, as a stream",
)

TV_CHANNELS = EndpointDescriptor(
    name="tv-channels",
    method="GET",
    path="/api/tv/channels",
    decoder=TVChannels.from_dict,
    description="Games currently featured on each TV channel",
)

# Event and board streams

STREAM_EVENTS = EndpointDescriptor(
    name="stream-events",
    method="GET",
    path="/api/stream/event",
    scope=Scope.challenge_read,
    shape=Shape.STREAM,
    description="Incoming challenges and game starts for the token owner",
)

STREAM_BOARD_GAME = EndpointDescriptor(
    name="stream-board-game",
    method="GET",
    path="/api/board/game/stream/{gameId}",
    scope=Scope.board_play,
    shape=Shape.STREAM,
    description="State of a board game being played",
)

# Challenges

CHALLENGE_CREATE = EndpointDescriptor(
    name="challenge-create",
    method="POST",
    path="/api/challenge/{username}",
    scope=Scope.challenge_write,
    description="Challenge another player",
)

CHALLENGE_AI = EndpointDescriptor(
    name="challenge-ai",
    method="POST",
    path="/api/challenge/ai",
    scope=Scope.challenge_write,
    description="Start a game against the computer",
)

CHALLENGE_ACCEPT = EndpointDescriptor(
    name="challenge-accept",
    method="POST",
    path="/api/challenge/{challengeId}/accept",
    scope=Scope.challenge_write,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Accept an incoming challenge",
)

CHALLENGE_DECLINE = EndpointDescriptor(
    name="challenge-decline",
    method="POST",
    path="/api/challenge/{challengeId}/decline",
    scope=Scope.challenge_write,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Decline an incoming challenge (body: reason)",
)

CHALLENGE_CANCEL = EndpointDescriptor(
    name="challenge-cancel",
    method="POST",
    path="/api/challenge/{challengeId}/cancel",
    scope=Scope.challenge_write,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Cancel a challenge you sent (query: opponentToken)",
)

# Teams

TEAM_JOIN = EndpointDescriptor(
    name="team-join",
    method="POST",
    path="/team/{teamId}/join",
    scope=Scope.team_write,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Join a team (body: message, password)",
)

TEAM_LEAVE = EndpointDescriptor(
    name="team-leave",
    method="POST",
    path="/team/{teamId}/quit",
    scope=Scope.team_write,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Leave a team",
)

TEAM_KICK = EndpointDescriptor(
    name="team-kick",
    method="POST",
    path="/api/team/{teamId}/kick/{userId}",
    scope=Scope.team_lead,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Kick a member from a team you lead",
)

TEAM_MESSAGE = EndpointDescriptor(
    name="team-message",
    method="POST",
    path="/team/{teamId}/pm-all",
    scope=Scope.team_lead,
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Message all members of a team you lead (body: message)",
)

TEAM_REQUESTS = EndpointDescriptor(
    name="team-requests",
    method="GET",
    path="/api/team/{teamId}/requests",
    scope=Scope.team_read,
    decoder=TeamRequest.from_dict,
    description="Pending join requests of a team you lead",
)

TEAM_SEARCH = EndpointDescriptor(
    name="team-search",
    method="GET",
    path="/api/team/search",
    pagination=Pagination(cursor_field="nextPage", cursor_param="page"),
    description="Search teams by name (query: text)",
)

# OAuth

TOKEN_EXCHANGE = EndpointDescriptor(
    name="token-exchange",
    method="POST",
    path="/api/token",
    description="Exchange an authorization code for an access token",
)

TOKEN_REVOKE = EndpointDescriptor(
    name="token-revoke",
    method="DELETE",
    path="/api/token",
    empty=EmptyBody.ACK,
    decoder=Ack.from_dict,
    description="Revoke the access token used for the request",
)


ENDPOINTS: dict[str, EndpointDescriptor] = {
    descriptor.name: descriptor
    for descriptor in (
        ACCOUNT,
        ACCOUNT_EMAIL,
        ACCOUNT_PREFERENCES,
        USER,
        USERS_STATUS,
        USER_GAMES,
        TV_CHANNELS,
        STREAM_EVENTS,
        STREAM_BOARD_GAME,
        CHALLENGE_CREATE,
        CHALLENGE_AI,
        CHALLENGE_ACCEPT,
        CHALLENGE_DECLINE,
        CHALLENGE_CANCEL,
        TEAM_JOIN,
        TEAM_LEAVE,
        TEAM_KICK,
        TEAM_MESSAGE,
        TEAM_REQUESTS,
        TEAM_SEARCH,
        TOKEN_EXCHANGE,
        TOKEN_REVOKE,
    )
}


def get_endpoint(name: str) -> EndpointDescriptor:
    """Look up a descriptor by name.

    Raises:
        KeyError: If no endpoint has that name
    """
    try:
        return ENDPOINTS[name]
    except KeyError:
        known = ", ".join(sorted(ENDPOINTS))
        raise KeyError(f"Unknown endpoint '{name}'. Known endpoints: {known}") from None
