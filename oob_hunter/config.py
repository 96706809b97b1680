from __future__ import annotations
from dataclasses import dataclass
import httpx
from pydantic_settings import BaseSettings
from pydantic import Field

from .session import SessionInfo

DEFAULT_SERVER_URL = "https://oast.site"
USER_AGENT = "oob-hunter/0.1"


class Settings(BaseSettings):
    # Collaborator server
    SERVER_URL: str = Field(default=DEFAULT_SERVER_URL)
    TOKEN: str | None = Field(default=None)
    DISABLE_HTTP_FALLBACK: bool = Field(default=False)

    # Identity
    CORRELATION_ID_LENGTH: int = Field(default=20, ge=1)
    CORRELATION_ID_NONCE_LENGTH: int = Field(default=13, ge=1)

    # Polling
    KEEP_ALIVE_MS: int = Field(default=30000, gt=0)
    SESSION_FILE: str | None = Field(default=None)

    # Networking
    TIMEOUT_S: float = Field(default=10)
    HTTP2: bool = Field(default=True)
    PROXY_URL: str | None = Field(default=None)

    model_config = {"env_prefix": "OOB_", "env_file": ".env", "env_file_encoding": "utf-8"}


@dataclass
class ClientOptions:
    server_url: str = DEFAULT_SERVER_URL
    token: str | None = None
    disable_http_fallback: bool = False
    correlation_id_length: int = 20
    correlation_id_nonce_length: int = 13
    session_info: SessionInfo | None = None
    keep_alive_interval: int | None = None

    @classmethod
    def from_settings(cls, s: Settings, session_info: SessionInfo | None = None,
                      keep_alive: bool = True) -> "ClientOptions":
        return cls(
            server_url=s.SERVER_URL,
            token=s.TOKEN,
            disable_http_fallback=s.DISABLE_HTTP_FALLBACK,
            correlation_id_length=s.CORRELATION_ID_LENGTH,
            correlation_id_nonce_length=s.CORRELATION_ID_NONCE_LENGTH,
            session_info=session_info,
            keep_alive_interval=s.KEEP_ALIVE_MS if keep_alive else None,
        )


def build_http_client(settings: Settings | None = None, **kwargs) -> httpx.AsyncClient:
    """AsyncClient configured for the collaborator protocol (timeouts, proxy, HTTP/2)."""
    s = settings or Settings()
    return httpx.AsyncClient(
        http2=s.HTTP2,
        timeout=httpx.Timeout(s.TIMEOUT_S),
        proxy=s.PROXY_URL or None,
        follow_redirects=False,
        headers={"User-Agent": USER_AGENT},
        **kwargs,
    )
