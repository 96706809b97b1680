"""Session identity, client state and the saved-session format.

A saved session is a flat JSON object::

    {"serverURL": "...", "token": "...", "correlationID": "...", "secretKey": "..."}

Private key material is never part of it.  Resuming registers a fresh key
pair under the same correlation id / secret key.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from yarl import URL

from .errors import ConfigurationError, StateError

DEFAULT_POLLING_INTERVAL_MS = 5000
MIN_REFRESH_SECONDS = 5
MAX_REFRESH_SECONDS = 3600
SESSION_KEYS = ("serverURL", "token", "correlationID", "secretKey")


class ClientState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    CLOSED = "closed"


def parse_server_url(value: str | URL) -> URL:
    try:
        url = value if isinstance(value, URL) else URL(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid server URL {value!r}: {e}") from e
    if not url.is_absolute() or not url.host or url.scheme not in ("http", "https"):
        raise ConfigurationError(f"server URL must be an absolute http(s) URL, got {value!r}")
    return url


@dataclass
class SessionInfo:
    server_url: str
    token: str
    correlation_id: str
    secret_key: str

    def to_dict(self) -> dict[str, str]:
        return {
            "serverURL": self.server_url,
            "token": self.token,
            "correlationID": self.correlation_id,
            "secretKey": self.secret_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionInfo":
        if not isinstance(data, dict):
            raise ConfigurationError("session info must be a JSON object")
        missing = [k for k in ("serverURL", "correlationID", "secretKey") if not data.get(k)]
        if missing:
            raise ConfigurationError(f"session info is missing {', '.join(missing)}")
        return cls(
            server_url=str(data["serverURL"]),
            token=str(data.get("token") or ""),
            correlation_id=str(data["correlationID"]),
            secret_key=str(data["secretKey"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "SessionInfo":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"session info is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass
class Session:
    server_url: URL
    correlation_id: str
    secret_key: str
    token: str = ""
    public_key: str = ""
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    state: ClientState = field(default=ClientState.IDLE)

    def __post_init__(self):
        self.server_url = parse_server_url(self.server_url)
        if self.polling_interval_ms <= 0:
            raise ConfigurationError("polling interval must be positive")

    def __setattr__(self, name, value):
        # identity is fixed once the session exists
        if name in ("correlation_id", "secret_key") and name in self.__dict__:
            raise StateError(f"{name} cannot change on an established session")
        super().__setattr__(name, value)

    @property
    def host(self) -> str:
        return self.server_url.host or ""

    @property
    def host_port(self) -> str:
        """Host plus the port when it is not the scheme default, e.g. ``oast.test:8080``."""
        if not self.server_url.is_default_port():
            return f"{self.host}:{self.server_url.port}"
        return self.host

    @property
    def complete(self) -> bool:
        return bool(self.correlation_id and self.secret_key and self.host)

    def set_refresh_time_second(self, seconds: int | float) -> None:
        if seconds < MIN_REFRESH_SECONDS or seconds > MAX_REFRESH_SECONDS:
            raise ConfigurationError(
                f"The polling interval must be between {MIN_REFRESH_SECONDS} and {MAX_REFRESH_SECONDS} seconds"
            )
        self.polling_interval_ms = int(seconds * 1000)

    def info(self) -> SessionInfo:
        if not self.complete:
            raise ConfigurationError("Session data is incomplete")
        return SessionInfo(
            server_url=str(self.server_url),
            token=self.token or "",
            correlation_id=self.correlation_id,
            secret_key=self.secret_key,
        )


def save_session_file(path: str | Path, info: SessionInfo) -> Path:
    """Write ``info`` as JSON to ``path``, creating parent directories."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(info.to_json())
    return p


def load_session_file(path: str | Path) -> SessionInfo | None:
    """Read a saved session, or ``None`` when ``path`` does not exist."""
    p = Path(path)
    try:
        text = p.read_text()
    except FileNotFoundError:
        return None
    return SessionInfo.from_json(text)
