"""Typed views of a few API payloads.

Each model exposes a ``from_dict`` classmethod used as an endpoint decoder.
Decoders raise KeyError/TypeError/ValueError on payloads that do not have
the expected shape; the pipeline reports those as decode failures.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Ack:
    """Acknowledgement returned by write endpoints (``{"ok": true}``)."""

    ok: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Ack":
        return cls(ok=bool(data["ok"]))


@dataclass
class UserStatus:
    """Real-time status of a user."""

    id: str
    name: str
    title: str = ""
    playing_id: str = ""
    online: bool = False
    playing: bool = False
    streaming: bool = False
    patron: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserStatus":
        return cls(
            id=data["id"],
            name=data["name"],
            title=data.get("title") or "",
            playing_id=data.get("playingId") or "",
            online=bool(data.get("online", False)),
            playing=bool(data.get("playing", False)),
            streaming=bool(data.get("streaming", False)),
            patron=bool(data.get("patron", False)),
        )


@dataclass
class TVChannel:
    """The game currently featured on a TV channel."""

    user: str
    game_id: str
    rating: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TVChannel":
        user = data["user"]
        return cls(
            user=user.get("name") or user["id"],
            game_id=data["gameId"],
            rating=data.get("rating"),
        )


@dataclass
class TVChannels:
    """All TV channels keyed by channel name (``blitz``, ``bot``, ...)."""

    channels: dict[str, TVChannel] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TVChannels":
        if not isinstance(data, dict):
            raise TypeError(f"Expected an object, got {type(data).__name__}")
        return cls(
            channels={name: TVChannel.from_dict(value) for name, value in data.items()}
        )


@dataclass
class TeamRequest:
    """A pending request to join a team."""

    team_id: str
    user_id: str
    message: str = ""
    date: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TeamRequest":
        request = data.get("request", data)
        return cls(
            team_id=request["teamId"],
            user_id=request["userId"],
            message=request.get("message") or "",
            date=request.get("date"),
        )
