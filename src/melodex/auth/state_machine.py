# Authorization state machine - one end-to-end loopback OAuth attempt per platform.
# Created: 2026-10-06
#
#   NotStarted --start--> WaitingForBrowser --callback--> Processing
#   Processing --code exchanged--> TokenObtained --profile ok--> Completed
#   WaitingForBrowser|Processing|TokenObtained --error/timeout--> Failed(reason)
#   any --cancel--> NotStarted
#
# The status map, the loopback listeners and the in-memory login handles
# each have their own lock; none is held across an await. A cancelled or
# superseded attempt keeps running until its next check, then discards
# whatever it produced. The status lock also covers persisting a completed
# login, so cancel() cannot interleave with that write.

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from melodex.auth.browser import open_in_browser
from melodex.auth.callback import POLL_INTERVAL, RedirectRequest, accept_once
from melodex.auth.credential_store import CredentialStore
from melodex.auth.errors import AuthEngineError, ConfigError
from melodex.auth.exchanger import TokenExchanger
from melodex.auth.listener import LoopbackListenerManager
from melodex.auth.models import (
    COMPLETED,
    NOT_STARTED,
    PROCESSING,
    TOKEN_OBTAINED,
    WAITING_FOR_BROWSER,
    AuthorizationSession,
    AuthStatus,
    LoginRecord,
    utc_now,
)
from melodex.auth.providers import PROVIDERS, ProviderConfig, get_provider
from melodex.auth.url_builder import build_authorization_url, new_state_token

if TYPE_CHECKING:
    from melodex.config import OAuthClientConfig

logger = logging.getLogger(__name__)

CALLBACK_TIMEOUT = 180.0

StatusObserver = Callable[[str, AuthStatus], None]
BrowserOpener = Callable[[str], None]


class AuthorizationStateMachine:
    """Drives loopback OAuth attempts and exposes their status.

    Construct one per process and hand it to whoever needs it (UI, CLI,
    refresh gate). ``get_status`` is safe to poll from any thread.

    Args:
        store: Where successful logins are persisted.
        client_configs: Validated client credentials per platform.
        providers: Provider declarations (defaults to Spotify and osu!).
        exchanger: Token endpoint client.
        open_browser: Collaborator that opens a URL in the user's browser.
        on_status: Optional observer called after every transition, outside all locks.
        callback_timeout: Overall budget for the browser redirect, in seconds.
        poll_interval: Step of the callback poll loop, in seconds.
    """

    def __init__(
        self,
        store: CredentialStore,
        client_configs: Mapping[str, OAuthClientConfig],
        providers: Mapping[str, ProviderConfig] | None = None,
        exchanger: TokenExchanger | None = None,
        open_browser: BrowserOpener = open_in_browser,
        on_status: StatusObserver | None = None,
        callback_timeout: float = CALLBACK_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.store = store
        self._client_configs = dict(client_configs)
        self._providers = dict(providers) if providers is not None else dict(PROVIDERS)
        self._exchanger = exchanger or TokenExchanger()
        self._open_browser = open_browser
        self._on_status = on_status
        self.callback_timeout = callback_timeout
        self.poll_interval = poll_interval

        self._status_lock = threading.Lock()
        self._sessions: dict[str, AuthorizationSession] = {}

        self._listeners_lock = threading.Lock()
        self._listeners: dict[str, LoopbackListenerManager] = {}

        self._logins_lock = threading.Lock()
        self._logins: dict[str, LoginRecord] = {}

        self._tasks: set[asyncio.Task[AuthStatus]] = set()

    # ── Status ─────────────────────────────────────────────────────────

    @property
    def platforms(self) -> list[str]:
        return list(self._providers)

    def get_status(self, platform: str) -> AuthStatus:
        with self._status_lock:
            session = self._sessions.get(platform)
            return session.status if session else NOT_STARTED

    def get_all_statuses(self) -> dict[str, AuthStatus]:
        with self._status_lock:
            sessions = self._sessions
            return {p: sessions[p].status if p in sessions else NOT_STARTED for p in self._providers}

    def current_login(self, platform: str) -> LoginRecord | None:
        """The login produced by the last completed attempt in this process."""
        with self._logins_lock:
            return self._logins.get(platform)

    def listener_manager(self, platform: str) -> LoopbackListenerManager:
        with self._listeners_lock:
            manager = self._listeners.get(platform)
            if manager is None:
                provider = get_provider(platform, self._providers)
                manager = LoopbackListenerManager(host=provider.redirect_host)
                self._listeners[platform] = manager
            return manager

    # ── Control ────────────────────────────────────────────────────────

    def reset(self, platform: str) -> AuthorizationSession:
        """Install a fresh NotStarted session, invalidating the previous one."""
        session = AuthorizationSession(platform=platform)
        with self._status_lock:
            self._sessions[platform] = session
        self._notify(platform, NOT_STARTED)
        return session

    def cancel(self, platform: str) -> None:
        """Abort whatever attempt is running for ``platform``.

        Status goes back to NotStarted immediately, the loopback port is
        released, and the in-memory login handle is dropped. An in-flight
        HTTP request is left to finish; its result is discarded.
        """
        get_provider(platform, self._providers)
        self.reset(platform)
        self.listener_manager(platform).release()
        with self._logins_lock:
            self._logins.pop(platform, None)
        logger.info("Authorization for %s cancelled", platform)

    def cancel_all(self) -> None:
        for platform in self._providers:
            self.cancel(platform)

    def logout(self, platform: str) -> bool:
        """Cancel any attempt and forget the persisted login. Returns True if one existed."""
        self.cancel(platform)
        return self.store.remove(platform)

    def spawn(self, platform: str) -> asyncio.Task[AuthStatus]:
        """Run ``start(platform)`` as a background task on the running loop."""
        task = asyncio.get_running_loop().create_task(
            self.start(platform), name=f"authorize-{platform}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start(self, platform: str) -> AuthStatus:
        """Run one authorization attempt to the end and return its final status.

        If an attempt for ``platform`` is already in progress this is a
        no-op that returns the current status.
        """
        provider = get_provider(platform, self._providers)

        with self._status_lock:
            current = self._sessions.get(platform)
            if current is not None and current.status.in_progress:
                logger.info(
                    "Authorization for %s already in progress (%s), ignoring start()",
                    platform,
                    current.status,
                )
                return current.status
            session = AuthorizationSession(platform=platform)
            self._sessions[platform] = session
        self._notify(platform, NOT_STARTED)

        listeners = self.listener_manager(platform)
        listener = None
        try:
            client = self._client_config(platform)

            listener, port = listeners.acquire(provider.ports)
            session.bound_port = port
            session.started_at = utc_now()
            redirect_uri = provider.redirect_uri(port)
            state = new_state_token()
            url = build_authorization_url(
                provider.authorize_url,
                client.client_id,
                redirect_uri,
                provider.scope,
                state,
                provider.extra_params,
            )
            logger.debug("Authorization URL for %s: %s", platform, url)

            if not self._transition(session, WAITING_FOR_BROWSER):
                return self.get_status(platform)
            self._open_browser(url)

            request = await accept_once(listener, self.callback_timeout, self.poll_interval)
            listeners.release(listener)
            if not self._transition(session, PROCESSING):
                return self.get_status(platform)

            await self._complete(session, provider, client, request, state, redirect_uri)
        except AuthEngineError as e:
            self._transition(session, AuthStatus.failed(str(e)))
        except Exception as e:
            logger.exception("Unexpected error while authorizing %s", platform)
            self._transition(session, AuthStatus.failed(f"Unexpected error: {e}"))
        finally:
            if listener is not None:
                listeners.release(listener)

        return self.get_status(platform)

    # ── Internals ──────────────────────────────────────────────────────

    async def _complete(
        self,
        session: AuthorizationSession,
        provider: ProviderConfig,
        client: OAuthClientConfig,
        request: RedirectRequest,
        state: str,
        redirect_uri: str,
    ) -> None:
        logger.debug("Received callback for %s on %s", provider.name, request.path)
        code = request.authorization_code(expected_state=state)

        tokens = await self._exchanger.exchange_code(
            provider.token_url,
            client.client_id,
            client.client_secret,
            code,
            redirect_uri,
            client_auth=provider.client_auth,
        )
        if not self._transition(session, TOKEN_OBTAINED):
            return

        profile = provider.parse_profile(
            await self._exchanger.fetch_profile(provider.profile_url, tokens.access_token)
        )
        record = LoginRecord(
            platform=provider.name,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or "",
            expiry_time=tokens.expiry_time,
            avatar_url=profile.avatar_url,
            user_name=profile.user_name,
        )
        with self._status_lock:
            if self._sessions.get(session.platform) is not session:
                logger.debug("Discarding login for %s: attempt was superseded", provider.name)
                return
            self.store.upsert(record)
            with self._logins_lock:
                self._logins[provider.name] = record

        if self._transition(session, COMPLETED):
            logger.info(
                "%s authorization completed for %s",
                provider.display_name,
                record.user_name or "unknown user",
            )

    def _client_config(self, platform: str) -> OAuthClientConfig:
        client = self._client_configs.get(platform)
        if client is None:
            raise ConfigError(f"No client credentials configured for {platform}")
        return client

    def _transition(self, session: AuthorizationSession, status: AuthStatus) -> bool:
        """Set ``session``'s status if it is still current. Returns False if it was superseded."""
        log_failure = False
        with self._status_lock:
            if self._sessions.get(session.platform) is not session:
                return False
            session.status = status
            session.history.append(status.state)
            if status.reason is not None and not session.failure_logged:
                session.failure_logged = True
                log_failure = True

        if log_failure:
            logger.error("%s authorization failed: %s", session.platform, status.reason)
        self._notify(session.platform, status)
        return True

    def _notify(self, platform: str, status: AuthStatus) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(platform, status)
        except Exception:
            logger.warning("Status observer raised for %s", platform, exc_info=True)
