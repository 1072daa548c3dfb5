"""
CSRF Token Manager

Owns the client's view of the current CSRF token: serves it to callers,
refreshes it ahead of expiry, de-duplicates concurrent fetches and publishes
every state transition to subscribers.

One manager is created per client process by the composition root and passed
to whatever needs a token; there is no module-level instance.

Usage:
    async with httpx.AsyncClient(base_url="http://localhost:8000") as http_client:
        manager = CsrfTokenManager(http_client)
        unsubscribe = manager.subscribe(print)
        token = await manager.get_token()
        ...
        manager.destroy()

All state is touched from the event loop thread only. get_token() never
awaits between reading the state and recording a new in-flight request, so
concurrent callers share one fetch without a lock.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import httpx
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from substudio.utils.timestamp_utils import ms_until, now_ms


logger = logging.getLogger(__name__)

# Refresh when 5 minutes remain
TOKEN_REFRESH_THRESHOLD_MS = 5 * 60 * 1000

# Covers the latency between checking a token and the server receiving it
TOKEN_VALIDITY_BUFFER_MS = 1000

DEFAULT_TOKEN_URL = "/api/csrf"


@dataclass(frozen=True)
class CsrfTokenState:
    """Snapshot of the manager state. token and expires are always set or cleared together."""
    token: Optional[str] = None
    expires: Optional[int] = None
    is_loading: bool = False
    error: Optional[str] = None


CsrfTokenListener = Callable[[CsrfTokenState], None]


class CsrfFetchError(Exception):
    """The token endpoint answered with an error status or an unusable body."""


class CsrfTokenManager:
    """
    Client-side CSRF token lifecycle.

    Args:
        http_client: Client bound to the API origin; its cookie jar carries
                     the __csrf_token cookie back to the server
        token_url: Path of the token issuance endpoint
        scheduler: Scheduler for the proactive refresh job. When omitted the
                   manager creates, starts and shuts down its own
                   AsyncIOScheduler.
        refresh_threshold_ms: How long before expiry the refresh fires
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_url: str = DEFAULT_TOKEN_URL,
        scheduler: Optional[AsyncIOScheduler] = None,
        refresh_threshold_ms: int = TOKEN_REFRESH_THRESHOLD_MS
    ):
        self._http_client = http_client
        self._token_url = token_url
        self._refresh_threshold_ms = refresh_threshold_ms

        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
            }
        )
        self._refresh_job_id = f"csrf_token_refresh_{id(self)}"
        self._refresh_job: Optional[Job] = None

        self._state = CsrfTokenState()
        self._listeners: Dict[int, CsrfTokenListener] = {}
        self._next_listener_id = 0

        self._active_request: Optional[asyncio.Task] = None
        # Bumped whenever in-flight results must not be written to state
        self._generation = 0
        # Bumped by destroy(); waiters from before it get None
        self._destroy_count = 0

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, listener: CsrfTokenListener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        The listener is called immediately with the current state, then on
        every transition, in subscription order.

        Returns:
            Function that removes the listener (safe to call from inside a listener)
        """
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = listener

        listener(self._state)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _notify_listeners(self) -> None:
        state = self._state
        for listener_id, listener in list(self._listeners.items()):
            # Removed by an earlier listener during this round
            if listener_id not in self._listeners:
                continue
            try:
                listener(state)
            except Exception:
                logger.exception("CSRF token listener raised")

    def _update_state(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        self._notify_listeners()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get_current_data(self) -> CsrfTokenState:
        """Current state snapshot."""
        return self._state

    def is_token_valid(self) -> bool:
        """True if a token is held and stays valid for at least the safety buffer."""
        state = self._state
        if not state.token or state.expires is None:
            return False
        return now_ms() + TOKEN_VALIDITY_BUFFER_MS < state.expires

    @property
    def next_refresh_at(self) -> Optional[datetime]:
        """When the pending proactive refresh fires, or None if none is scheduled."""
        if self._refresh_job is None:
            return None
        return self._refresh_job.trigger.run_date

    async def get_token(self) -> Optional[str]:
        """
        Get a valid CSRF token, fetching one if necessary.

        Concurrent callers that arrive while a fetch is in flight wait for that
        same fetch instead of starting another one.

        Returns:
            The token, or None if it could not be obtained (see state.error)
        """
        if self.is_token_valid():
            return self._state.token

        return await self._join_or_start_fetch()

    async def refresh_token(self) -> None:
        """
        Force a new fetch, abandoning any request already in flight.

        The abandoned request never writes state; callers waiting on it get
        the result of the new fetch instead.
        """
        self._active_request = None
        self._generation += 1
        await self._join_or_start_fetch()

    async def initialize(self) -> None:
        """Fetch the first token unless one is held or already being fetched."""
        if not self._state.token and not self._has_active_request():
            await self.get_token()

    def destroy(self) -> None:
        """
        Release timers and subscribers and reset to the initial state.

        A request still in flight is not aborted; its result is discarded.
        """
        self._cancel_refresh_job()
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        self._active_request = None
        self._generation += 1
        self._destroy_count += 1
        self._listeners.clear()
        self._state = CsrfTokenState()

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def _has_active_request(self) -> bool:
        return self._active_request is not None and not self._active_request.done()

    async def _join_or_start_fetch(self) -> Optional[str]:
        destroy_count = self._destroy_count

        if self._has_active_request():
            task = self._active_request
        else:
            self._update_state(is_loading=True, error=None)
            task = asyncio.ensure_future(self._fetch_new_token(self._generation))
            self._active_request = task

        try:
            # A cancelled caller must not cancel the fetch other callers share
            token = await asyncio.shield(task)
        finally:
            if self._active_request is task and task.done():
                self._active_request = None

        if token is not None or destroy_count != self._destroy_count:
            return token

        # A fetch superseded by refresh_token() yields None; follow the newer one
        if self._active_request is not task and self._has_active_request():
            return await self._join_or_start_fetch()
        if self.is_token_valid():
            return self._state.token
        return None

    async def _fetch_new_token(self, generation: int) -> Optional[str]:
        try:
            response = await self._http_client.get(
                self._token_url,
                headers={
                    "Content-Type": "application/json",
                    "Cache-Control": "no-cache"
                }
            )

            if not response.is_success:
                try:
                    error_data = response.json()
                except ValueError:
                    error_data = {}
                message = error_data.get("error") if isinstance(error_data, dict) else None
                raise CsrfFetchError(message or f"HTTP {response.status_code}: Failed to fetch CSRF token")

            data = response.json()
            if not isinstance(data, dict) or not data.get("csrfToken") or not data.get("expires"):
                raise CsrfFetchError("Invalid CSRF token response format")

            token = str(data["csrfToken"])
            expires = int(data["expires"])

        except Exception as e:
            if generation != self._generation:
                logger.debug(f"Ignoring failure of a superseded CSRF token request: {e!r}")
                return None

            error_message = str(e) or e.__class__.__name__
            self._update_state(token=None, expires=None, is_loading=False, error=error_message)
            logger.error(f"Failed to fetch CSRF token: {error_message}")
            return None

        if generation != self._generation:
            logger.debug("Discarding CSRF token from a superseded request")
            return None

        self._update_state(token=token, expires=expires, is_loading=False, error=None)
        logger.debug(f"CSRF token fetched, expires in {ms_until(expires) // 1000}s")

        try:
            self._schedule_token_refresh(expires)
        except Exception:
            logger.exception("Could not schedule CSRF token refresh")

        return token

    # -------------------------------------------------------------------------
    # Scheduled refresh
    # -------------------------------------------------------------------------

    def _schedule_token_refresh(self, expires: int) -> None:
        self._cancel_refresh_job()

        refresh_in_ms = max(0, expires - now_ms() - self._refresh_threshold_ms)
        if refresh_in_ms == 0:
            # Every fetch will reschedule immediately until the server TTL exceeds the threshold
            logger.warning(
                f"CSRF token lifetime ({ms_until(expires) // 1000}s) is within the refresh threshold "
                f"({self._refresh_threshold_ms // 1000}s), refreshing immediately"
            )
        run_at = datetime.now(timezone.utc) + timedelta(milliseconds=refresh_in_ms)

        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()

        self._refresh_job = self._scheduler.add_job(
            func=self._on_refresh_timer,
            trigger=DateTrigger(run_date=run_at),
            id=self._refresh_job_id,
            name='CSRF Token Refresh',
            replace_existing=True,
            # Run even when the loop was busy past the run date
            misfire_grace_time=None,
        )
        logger.debug(f"CSRF token refresh scheduled in {refresh_in_ms // 1000}s")

    def _cancel_refresh_job(self) -> None:
        if self._refresh_job is None:
            return
        try:
            self._refresh_job.remove()
        except JobLookupError:
            # Already ran
            pass
        self._refresh_job = None

    async def _on_refresh_timer(self) -> None:
        self._refresh_job = None
        logger.info("Refreshing CSRF token ahead of expiry")
        await self._join_or_start_fetch()
