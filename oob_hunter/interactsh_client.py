from __future__ import annotations

from typing import Any, Dict, Optional

import anyio
import httpx
import structlog
from yarl import URL

from .config import ClientOptions, Settings, build_http_client
from .crypto import CryptoProvider, RSACryptoProvider
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    DeregistrationError,
    PollingError,
    RegistrationError,
    StateError,
)
from .interactions import InteractionHandler, decode_interaction, noop_handler
from .scheduler import PollingScheduler
from .session import (
    MAX_REFRESH_SECONDS,
    MIN_REFRESH_SECONDS,
    ClientState,
    Session,
    SessionInfo,
)
from .utils import generate_random_id, new_token

log = structlog.get_logger(__name__)


class InteractshClient:
    """Session-oriented client for an interactsh-compatible collaborator server.

    Lifecycle::

        client = InteractshClient()
        await client.initialize(ClientOptions(keep_alive_interval=30000), handler)
        url = client.generate_url()      # embed as bait
        ...
        await client.stop()              # stop polling + deregister

    State moves ``IDLE -> POLLING -> IDLE -> CLOSED``.  Guards are checked
    before any network I/O, invalid transitions raise :class:`StateError`.
    """

    def __init__(
        self,
        crypto: CryptoProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings
        self.crypto: CryptoProvider = crypto or RSACryptoProvider()
        self._client = http_client
        self._owns_client = http_client is None
        self.session: Optional[Session] = None
        self.nonce_length = 13
        self._handler: InteractionHandler = noop_handler
        self._scheduler = PollingScheduler(self.get_interactions, self._interval_ms)
        self._cycle_lock: Optional[anyio.Lock] = None
        self._closing = False

    # -- helpers ---------------------------------------------------------

    @property
    def state(self) -> ClientState:
        return self.session.state if self.session else ClientState.IDLE

    @property
    def registered(self) -> bool:
        """True once a session has been accepted by the server (and until it is closed)."""
        return self.session is not None and self.session.state is not ClientState.CLOSED

    @property
    def correlation_id(self) -> str | None:
        return self.session.correlation_id if self.session else None

    @property
    def secret_key(self) -> str | None:
        return self.session.secret_key if self.session else None

    @property
    def server_url(self) -> URL | None:
        return self.session.server_url if self.session else None

    @property
    def token(self) -> str | None:
        return self.session.token if self.session else None

    @property
    def polling_interval_ms(self) -> int | None:
        return self.session.polling_interval_ms if self.session else None

    @property
    def cycles(self) -> int:
        """Scheduled poll cycles completed so far."""
        return self._scheduler.cycles

    def _interval_ms(self) -> int:
        return self._require_session().polling_interval_ms

    def _require_session(self) -> Session:
        if self.session is None:
            raise StateError("Client is not initialized")
        return self.session

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_http_client(self.settings)
            self._owns_client = True
        return self._client

    def _headers(self, session: Session, json: bool = False) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if json:
            headers["Content-Type"] = "application/json"
        if session.token:
            headers["Authorization"] = session.token
        return headers

    def _lock(self) -> anyio.Lock:
        if self._cycle_lock is None:
            self._cycle_lock = anyio.Lock()
        return self._cycle_lock

    # -- session establishment -------------------------------------------

    async def initialize(self, options: ClientOptions | None = None, handler: InteractionHandler | None = None) -> None:
        """Create (or resume) a session and register it with the server.

        Raises :class:`RegistrationError` when the server does not accept the
        registration; a previously registered session, if any, stays in use.
        """
        if options is None:
            options = ClientOptions.from_settings(self.settings or Settings(), keep_alive=False)
        if self.state is ClientState.POLLING:
            raise StateError("Client should stop polling before re-initializing")
        if options.correlation_id_nonce_length < 1:
            raise ConfigurationError("correlation id nonce length must be >= 1")
        if options.keep_alive_interval is not None and options.keep_alive_interval <= 0:
            raise ConfigurationError("keep-alive interval must be positive")

        info = options.session_info
        if info is not None:
            server_url, token = info.server_url, info.token
            correlation_id, secret_key = info.correlation_id, info.secret_key
        else:
            server_url = options.server_url
            token = options.token or new_token()
            correlation_id = generate_random_id(options.correlation_id_length)
            secret_key = generate_random_id(options.correlation_id_nonce_length)
        session = Session(server_url=server_url, correlation_id=correlation_id, secret_key=secret_key, token=token)
        session.public_key = self.crypto.encode_public_key()
        log.info("session_created", server=str(session.server_url), correlation_id=correlation_id,
                 resumed=info is not None)

        # the current session (if any) stays in place until the new one is registered
        await self.register(
            {
                "public-key": session.public_key,
                "secret-key": session.secret_key,
                "correlation-id": session.correlation_id,
            },
            fallback=not options.disable_http_fallback,
            session=session,
        )
        self.session = session
        self._closing = False
        self.nonce_length = options.correlation_id_nonce_length
        if handler is not None:
            self._handler = handler

        if options.keep_alive_interval:
            session.polling_interval_ms = int(options.keep_alive_interval)
            self.start_polling(self._handler)

    async def start(self, options: ClientOptions | None = None, handler: InteractionHandler | None = None) -> None:
        await self.initialize(options, handler)

    async def register(self, payload: Dict[str, Any], fallback: bool = True, session: Session | None = None) -> None:
        """POST ``payload`` to ``/register`` for ``session`` (default: the current one)."""
        session = session or self._require_session()
        url = session.server_url.with_path("/register")
        try:
            r = await self._http().post(str(url), json=payload, headers=self._headers(session, json=True))
        except httpx.TransportError as e:
            if fallback and session.server_url.scheme == "https":
                log.warning("registration_http_fallback", server=str(session.server_url), error=str(e))
                session.server_url = session.server_url.with_scheme("http")
                try:
                    return await self.register(payload, fallback=False, session=session)
                except RegistrationError:
                    session.server_url = session.server_url.with_scheme("https")
                    raise
            log.error("registration_failed", server=str(session.server_url), error=str(e))
            raise RegistrationError(f"Registration request failed: {e}") from e
        if r.status_code != 200:
            log.error("registration_failed", server=str(session.server_url), status=r.status_code)
            raise RegistrationError(f"Registration failed with status {r.status_code}: {r.text}")
        session.state = ClientState.IDLE
        log.info("registered", server=str(session.server_url), correlation_id=session.correlation_id)

    # -- poll cycle ------------------------------------------------------

    async def get_interactions(self, handler: InteractionHandler | None = None) -> int:
        """Fetch, decrypt and deliver pending interactions; return how many were delivered.

        Items are handed to ``handler`` in server order.  The first item that
        fails to decrypt or decode stops the batch with :class:`DecodeError`,
        items before it have already been delivered.
        """
        session = self._require_session()
        if session.state is ClientState.CLOSED:
            raise StateError("Client is closed")
        handler = handler or self._handler
        async with self._lock():
            url = session.server_url.with_path("/poll").with_query(id=session.correlation_id, secret=session.secret_key)
            try:
                r = await self._http().get(str(url), headers=self._headers(session))
            except httpx.HTTPError as e:
                log.warning("poll_request_failed", error=str(e))
                raise PollingError(f"Could not poll interactions: {e}") from e
            if r.status_code == 401:
                log.warning("poll_unauthorized", correlation_id=session.correlation_id)
                raise AuthenticationError("Couldn't authenticate to the server")
            if r.status_code != 200:
                log.warning("poll_failed", status=r.status_code)
                raise PollingError(f"Could not poll interactions: {r.text}", status_code=r.status_code, body=r.text)

            try:
                envelope = r.json()
            except ValueError as e:
                raise PollingError("Poll response is not JSON", status_code=r.status_code, body=r.text) from e
            items = envelope.get("data") if isinstance(envelope, dict) else None
            if not items:
                return 0
            if not isinstance(items, list):
                raise PollingError("Poll response data is not a list", status_code=r.status_code, body=r.text)

            shared_key = envelope.get("aes_key")
            delivered = 0
            for index, item in enumerate(items):
                try:
                    if not shared_key:
                        raise DecodeError("poll response has no aes_key")
                    interaction = decode_interaction(self.crypto.decrypt_message(shared_key, item))
                except DecodeError as e:
                    log.warning("interaction_decode_failed", index=index, delivered=delivered,
                                dropped=len(items) - index, error=str(e))
                    raise
                except (ValueError, TypeError) as e:
                    log.warning("interaction_decode_failed", index=index, delivered=delivered,
                                dropped=len(items) - index, error=str(e))
                    raise DecodeError(f"Could not decrypt interaction {index}: {e}") from e
                log.info("interaction_received", protocol=interaction.protocol, full_id=interaction.full_id,
                         remote_address=interaction.remote_address)
                handler(interaction)
                delivered += 1
            return delivered

    # -- polling scheduler -----------------------------------------------

    def start_polling(self, handler: InteractionHandler | None = None) -> None:
        session = self._require_session()
        if session.state is ClientState.POLLING:
            raise StateError("Client is already polling")
        if session.state is ClientState.CLOSED:
            raise StateError("Client is closed")
        if handler is not None:
            self._handler = handler
        self._scheduler.start(self._handler)
        session.state = ClientState.POLLING
        log.info("polling_started", interval_ms=session.polling_interval_ms)

    def stop_polling(self) -> None:
        if self.state is not ClientState.POLLING:
            raise StateError("Client is not polling")
        self._scheduler.stop()
        self._require_session().state = ClientState.IDLE
        log.info("polling_stopped")

    async def poll(self) -> int:
        """Run one poll cycle now, outside the schedule."""
        if self.state is not ClientState.POLLING:
            raise StateError("Client is not polling")
        return await self.get_interactions(self._handler)

    def set_refresh_time_second(self, seconds: int | float) -> None:
        if seconds < MIN_REFRESH_SECONDS or seconds > MAX_REFRESH_SECONDS:
            raise ConfigurationError(
                f"The polling interval must be between {MIN_REFRESH_SECONDS} and {MAX_REFRESH_SECONDS} seconds"
            )
        self._require_session().set_refresh_time_second(seconds)

    # -- teardown --------------------------------------------------------

    async def close(self) -> None:
        """Deregister from the server.  On failure the state is left untouched."""
        session = self._require_session()
        if session.state is ClientState.POLLING:
            raise StateError("Client should stop polling before closing")
        if session.state is ClientState.CLOSED:
            raise StateError("Client is already closed")
        if self._closing:
            raise StateError("Client is already closing")
        self._closing = True
        try:
            url = session.server_url.with_path("/deregister")
            body = {"correlationID": session.correlation_id, "secretKey": session.secret_key}
            try:
                r = await self._http().post(str(url), json=body, headers=self._headers(session, json=True))
            except httpx.HTTPError as e:
                log.error("deregistration_failed", error=str(e))
                raise DeregistrationError(f"Could not deregister from server: {e}") from e
            if r.status_code != 200:
                log.error("deregistration_failed", status=r.status_code)
                raise DeregistrationError(f"Could not deregister from server: {r.text}")
            session.state = ClientState.CLOSED
            log.info("deregistered", correlation_id=session.correlation_id)
        finally:
            self._closing = False
        await self.aclose()

    async def stop(self) -> None:
        if self.state is ClientState.POLLING:
            self.stop_polling()
            await self._scheduler.wait_stopped()
        await self.close()

    async def aclose(self) -> None:
        """Stop the poll loop and release the HTTP client if this instance created it.

        Does not deregister, the session can still be saved and resumed.
        """
        if self.state is ClientState.POLLING:
            self.stop_polling()
        await self._scheduler.wait_stopped()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "InteractshClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # -- bait urls / export ----------------------------------------------

    def generate_url(self) -> str:
        """Return a fresh bait URL, or ``""`` when closed or not initialized."""
        session = self.session
        if session is None or session.state is ClientState.CLOSED or not session.complete:
            return ""
        nonce = generate_random_id(self.nonce_length)
        return f"https://{session.correlation_id}{nonce}.{session.host_port}"

    def save_session(self) -> SessionInfo:
        if self.session is None:
            raise ConfigurationError("Session data is incomplete")
        info = self.session.info()
        log.info("session_exported", correlation_id=info.correlation_id,
                 has_private_key=self.crypto.get_private_key() is not None)
        return info
