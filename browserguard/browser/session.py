"""Browser session lifecycle.

The SessionManager owns the only browser and page handles. Other components
reach the page exclusively through ``with_page``, which serializes access,
applies the circuit breaker and a per-call timeout, and detects crashed
browsers. Launching goes through a pluggable launcher so tests can inject
fakes; the default launcher drives Playwright's Chromium.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar
from uuid import uuid4

from playwright.async_api import async_playwright
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from browserguard.browser.circuit_breaker import CircuitBreaker
from browserguard.browser.locator import (
    find_available_port,
    recommended_host,
    resolve_browser_executable,
)
from browserguard.core.config import Settings, get_settings
from browserguard.core.errors import (
    BrowserLaunchError,
    BrowserNotFoundError,
    CircuitOpenError,
    NavigationTimeoutError,
    NoPortAvailableError,
    SessionBusyError,
    SessionCrashedError,
    SessionReplacedError,
    ValidationError,
    is_unrecoverable,
)
from browserguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    """Lifecycle states of the browser session."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    CLOSING = "closing"
    CLOSED = "closed"
    CRASHED = "crashed"


ACTIVE_STATES = frozenset({SessionState.READY, SessionState.BUSY})


@dataclass
class LaunchConfig:
    """How to obtain a browser. Unset fields are filled from settings."""
    headless: bool | None = None
    executable_path: str | None = None
    debug_port: int | None = None
    host: str | None = None
    cdp_endpoint: str | None = None
    args: list[str] = field(default_factory=list)
    navigation_timeout_ms: int | None = None


@dataclass
class LaunchedBrowser:
    """Handles produced by a launcher."""
    browser: Any
    page: Any
    context: Any = None
    driver: Any = None


class BrowserLauncher(Protocol):
    """Anything that can produce a browser and a page."""

    async def launch(self, config: LaunchConfig) -> LaunchedBrowser:
        ...


@dataclass
class BrowserSession:
    """Public view of the session; never exposes the handles."""
    session_id: str | None = None
    state: SessionState = SessionState.UNINITIALIZED
    created_at: float | None = None
    last_activity_at: float | None = None
    debug_port: int | None = None
    executable_path: str | None = None
    crash_reason: str | None = None

    def idle_seconds(self, now: float) -> float:
        """Seconds since the last operation finished."""
        if self.last_activity_at is None:
            return 0.0
        return max(0.0, now - self.last_activity_at)


class PlaywrightLauncher:
    """Launch Chromium (or connect over CDP) with Playwright."""

    async def launch(self, config: LaunchConfig) -> LaunchedBrowser:
        """Start the driver and return a browser with one page.

        Args:
            config: Fully resolved launch configuration

        Returns:
            LaunchedBrowser with browser, context, page and driver handles
        """
        playwright = await async_playwright().start()
        try:
            if config.cdp_endpoint:
                browser = await playwright.chromium.connect_over_cdp(config.cdp_endpoint)
                contexts = browser.contexts
                context = contexts[0] if contexts else await browser.new_context()
            else:
                args = list(config.args)
                if config.debug_port:
                    args.append(f"--remote-debugging-port={config.debug_port}")
                if config.host:
                    args.append(f"--remote-debugging-address={config.host}")
                browser = await playwright.chromium.launch(
                    headless=config.headless if config.headless is not None else True,
                    executable_path=config.executable_path,
                    args=args,
                )
                context = await browser.new_context()

            page = context.pages[0] if context.pages else await context.new_page()
            if config.navigation_timeout_ms:
                page.set_default_navigation_timeout(config.navigation_timeout_ms)
        except Exception:
            await playwright.stop()
            raise

        logger.info(
            "browser_launched",
            cdp=bool(config.cdp_endpoint),
            executable=config.executable_path or "bundled",
            debug_port=config.debug_port,
        )
        return LaunchedBrowser(browser=browser, page=page, context=context, driver=playwright)


def _consume_residual(task: asyncio.Future) -> None:
    """Swallow the outcome of an operation that already timed out."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("late_operation_failure_discarded", error=str(exc), error_type=type(exc).__name__)


class SessionManager:
    """Owns the single browser session.

    Attributes:
        breaker: Circuit breaker applied to lifecycle and page operations
    """

    def __init__(
        self,
        settings: Settings | None = None,
        breaker: CircuitBreaker | None = None,
        ledger: Any = None,
        launcher: BrowserLauncher | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Settings (defaults to get_settings())
            breaker: Circuit breaker (one is built from settings if omitted)
            ledger: Workflow ledger reset on close
            launcher: Browser launcher (defaults to PlaywrightLauncher)
            clock: Monotonic clock
        """
        self.settings = settings or get_settings()
        self._clock = clock or time.monotonic
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=self.settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=self.settings.CIRCUIT_COOLDOWN_SECONDS,
            max_cooldown_seconds=self.settings.CIRCUIT_MAX_COOLDOWN_SECONDS,
            clock=self._clock,
        )
        self._ledger = ledger
        self._launcher = launcher or PlaywrightLauncher()

        self._session = BrowserSession()
        self._browser: Any = None
        self._page: Any = None
        self._context: Any = None
        self._driver: Any = None

        self._init_lock = asyncio.Lock()
        self._op_lock = asyncio.Lock()
        # Bumped on every teardown; page calls started under an older value are stale.
        self._generation = 0

    @property
    def session(self) -> BrowserSession:
        """Current session view."""
        return self._session

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._session.state

    async def init(self, config: LaunchConfig | None = None, force: bool = False) -> BrowserSession:
        """Bring the session to Ready.

        A live session is reused unless ``force`` is set, in which case it is
        closed first. A dead or crashed session is torn down and replaced.

        Args:
            config: Launch overrides
            force: Close a live session before launching

        Returns:
            The ready session

        Raises:
            BrowserLaunchError: If every launch attempt failed
            CircuitOpenError: If the lifecycle circuit is open
        """
        async with self._init_lock:
            if self._session.state in ACTIVE_STATES:
                if not force and await self._probe_liveness():
                    logger.info("session_reused", session_id=self._session.session_id)
                    return self._session
                logger.info(
                    "session_replaced",
                    session_id=self._session.session_id,
                    forced=force,
                )
                await self._teardown()
            elif self._session.state == SessionState.CRASHED:
                await self._teardown()

            resolved = self._resolve_config(config or LaunchConfig())
            self._session = BrowserSession(
                session_id=uuid4().hex[:12],
                state=SessionState.INITIALIZING,
                debug_port=resolved.debug_port,
                executable_path=resolved.executable_path,
            )
            logger.info(
                "session_initializing",
                session_id=self._session.session_id,
                debug_port=resolved.debug_port,
                executable=resolved.executable_path or "bundled",
            )

            try:
                launched = await self.breaker.guard(
                    "lifecycle", lambda: self._launch_with_retries(resolved)
                )
            except Exception:
                self._session.state = SessionState.CLOSED
                raise

            self._browser = launched.browser
            self._page = launched.page
            self._context = launched.context
            self._driver = launched.driver
            self._watch_disconnect(launched.browser)

            now = self._clock()
            self._session.created_at = now
            self._session.last_activity_at = now
            self._session.state = SessionState.READY
            logger.info("session_ready", session_id=self._session.session_id)
            return self._session

    def _resolve_config(self, config: LaunchConfig) -> LaunchConfig:
        settings = self.settings
        resolved = LaunchConfig(
            headless=settings.BROWSER_HEADLESS if config.headless is None else config.headless,
            executable_path=config.executable_path,
            debug_port=config.debug_port,
            host=config.host,
            cdp_endpoint=config.cdp_endpoint or settings.BROWSER_CDP_ENDPOINT,
            args=[*settings.BROWSER_ARGS, *config.args],
            navigation_timeout_ms=config.navigation_timeout_ms or settings.NAVIGATION_TIMEOUT_MS,
        )
        if resolved.cdp_endpoint:
            return resolved

        if resolved.host is None:
            resolved.host = recommended_host()
        if resolved.debug_port is None:
            resolved.debug_port = find_available_port(
                settings.DEBUG_PORT_START,
                span=settings.DEBUG_PORT_SPAN,
            )
        if resolved.executable_path is None:
            try:
                resolved.executable_path = resolve_browser_executable(settings.BROWSER_PATH_ENV_VAR)
            except BrowserNotFoundError:
                logger.warning("browser_executable_not_found_using_bundled")
        return resolved

    async def _launch_with_retries(self, config: LaunchConfig) -> LaunchedBrowser:
        settings = self.settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.LAUNCH_ATTEMPTS),
            wait=wait_exponential(multiplier=settings.LAUNCH_BACKOFF_SECONDS, max=10),
            retry=retry_if_not_exception_type((BrowserNotFoundError, NoPortAvailableError)),
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    if attempt_number > 1:
                        logger.warning("browser_launch_retry", attempt=attempt_number)
                    return await asyncio.wait_for(
                        self._launcher.launch(config),
                        timeout=settings.LAUNCH_TIMEOUT_SECONDS,
                    )
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(
                "browser_launch_failed",
                attempts=settings.LAUNCH_ATTEMPTS,
                error=str(last),
                error_type=type(last).__name__,
            )
            raise BrowserLaunchError(
                f"Browser launch failed after {settings.LAUNCH_ATTEMPTS} attempts: "
                f"{str(last) or 'launch timed out'}",
                context={"attempts": settings.LAUNCH_ATTEMPTS, "debug_port": config.debug_port},
                suggested_action="Check the browser installation, or set BROWSER_CDP_ENDPOINT.",
            ) from last
        raise BrowserLaunchError("Browser launch produced no result")

    def _watch_disconnect(self, browser: Any) -> None:
        on = getattr(browser, "on", None)
        if not callable(on):
            return
        generation = self._generation

        def on_disconnected(*_: Any) -> None:
            if generation == self._generation:
                self._mark_crashed("browser disconnected")

        on("disconnected", on_disconnected)

    def _mark_crashed(self, reason: str) -> None:
        if self._session.state not in ACTIVE_STATES:
            return
        self._session.state = SessionState.CRASHED
        self._session.crash_reason = reason
        logger.error("session_crashed", session_id=self._session.session_id, reason=reason)

    def _ensure_usable(self) -> None:
        state = self._session.state
        if state == SessionState.CRASHED:
            raise SessionCrashedError(
                f"Browser session crashed: {self._session.crash_reason or 'unknown reason'}",
                context={"session_id": self._session.session_id},
            )
        if state not in ACTIVE_STATES or self._page is None:
            raise ValidationError(
                f"No ready browser session (state: {state.value})",
                context={"state": state.value},
                suggested_action="Call browser_init first.",
            )

    async def with_page(
        self,
        fn: Callable[[Any], Awaitable[T]],
        operation_class: str = "interaction",
        timeout: float | None = None,
    ) -> T:
        """Run ``fn(page)`` as the only user of the page.

        Calls queue for up to BUSY_WAIT_SECONDS. The call runs behind the
        circuit breaker for ``operation_class`` and is raced against
        ``timeout`` (OPERATION_TIMEOUT_SECONDS by default).

        Raises:
            ValidationError: If there is no ready session
            SessionBusyError: If the page stayed busy past the wait
            SessionCrashedError: If the browser is gone
            CircuitOpenError: If the circuit is open
            SessionReplacedError: If the session was closed or replaced while the call ran
        """
        self._ensure_usable()
        await self._acquire_page(operation_class)
        generation = self._generation

        def replaced() -> bool:
            return self._generation != generation

        try:
            self._ensure_usable()
            page = self._page
            session = self._session
            session.state = SessionState.BUSY
            budget = timeout or self.settings.OPERATION_TIMEOUT_SECONDS

            try:
                result = await self.breaker.guard(
                    operation_class,
                    lambda: self._run_with_timeout(fn, page, budget, operation_class),
                    discard=replaced,
                )
            except (CircuitOpenError, ValidationError):
                raise
            except Exception as exc:
                if replaced():
                    raise self._replaced_error(session, operation_class, exc) from exc
                await self._check_crash(exc, operation_class)
                raise
            if replaced():
                raise self._replaced_error(session, operation_class)
            return result
        finally:
            if not replaced():
                if self._session.state == SessionState.BUSY:
                    self._session.state = SessionState.READY
                self._session.last_activity_at = self._clock()
            self._op_lock.release()

    def _replaced_error(
        self, session: BrowserSession, operation_class: str, exc: Exception | None = None
    ) -> SessionReplacedError:
        """The outcome of a call whose session was torn down while it ran."""
        logger.info(
            "stale_operation_discarded",
            session_id=session.session_id,
            operation_class=operation_class,
            error=str(exc) if exc is not None else None,
        )
        return SessionReplacedError(
            f"Browser session {session.session_id} was closed during {operation_class}",
            context={"session_id": session.session_id, "operation_class": operation_class},
        )

    async def _acquire_page(self, operation_class: str) -> None:
        if not self._op_lock.locked():
            await self._op_lock.acquire()
            return
        logger.debug("session_busy_waiting", operation_class=operation_class)
        try:
            await asyncio.wait_for(self._op_lock.acquire(), timeout=self.settings.BUSY_WAIT_SECONDS)
        except asyncio.TimeoutError as e:
            raise SessionBusyError(
                f"Session busy for more than {self.settings.BUSY_WAIT_SECONDS}s",
                context={"operation_class": operation_class},
                suggested_action="Retry once the current operation has finished.",
            ) from e

    async def _run_with_timeout(
        self,
        fn: Callable[[Any], Awaitable[T]],
        page: Any,
        budget: float,
        operation_class: str,
    ) -> T:
        task = asyncio.ensure_future(fn(page))
        try:
            done, _ = await asyncio.wait({task}, timeout=budget)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_consume_residual)
            raise

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_consume_residual)
        logger.warning("operation_timed_out", operation_class=operation_class, timeout_seconds=budget)
        raise NavigationTimeoutError(
            f"{operation_class} operation timed out after {budget:g}s",
            context={"operation_class": operation_class, "timeout_seconds": budget},
        )

    async def _check_crash(self, exc: Exception, operation_class: str) -> None:
        if isinstance(exc, SessionBusyError):
            return

        if is_unrecoverable(exc):
            self._mark_crashed(str(exc))
        elif isinstance(exc, NavigationTimeoutError) and not await self._probe_liveness():
            self._mark_crashed(f"unresponsive after timeout in {operation_class}")

        if self._session.state == SessionState.CRASHED and not isinstance(exc, SessionCrashedError):
            raise SessionCrashedError(
                f"Browser session crashed during {operation_class}: {exc}",
                context={"session_id": self._session.session_id, "operation_class": operation_class},
            ) from exc

    async def _probe_liveness(self) -> bool:
        browser, page = self._browser, self._page
        if browser is None or page is None:
            return False
        try:
            if not browser.is_connected():
                return False
            result = await asyncio.wait_for(
                page.evaluate("() => true"),
                timeout=self.settings.LIVENESS_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.debug("liveness_probe_failed", error=str(e), error_type=type(e).__name__)
            return False
        return bool(result)

    async def is_alive(self) -> bool:
        """Whether the browser is connected and the page answers a trivial script."""
        if self._session.state not in ACTIVE_STATES:
            return False
        return await self._probe_liveness()

    async def close(self) -> None:
        """Tear the session down. Safe to call repeatedly; never raises."""
        async with self._init_lock:
            if self._session.state in (SessionState.CLOSED, SessionState.UNINITIALIZED) and (
                self._browser is None and self._driver is None
            ):
                logger.debug("session_already_closed")
                return
            await self._teardown()

    async def close_if_idle(self) -> bool:
        """Close a Ready session idle longer than SESSION_IDLE_TIMEOUT_SECONDS.

        Returns:
            True if the session was closed
        """
        if self._session.state != SessionState.READY:
            return False
        idle = self._session.idle_seconds(self._clock())
        if idle <= self.settings.SESSION_IDLE_TIMEOUT_SECONDS:
            return False
        logger.info("session_idle_timeout", session_id=self._session.session_id, idle_seconds=round(idle, 1))
        await self.close()
        return True

    async def _teardown(self) -> None:
        browser, page, context, driver = self._browser, self._page, self._context, self._driver
        self._generation += 1
        # Drop references first so nothing can reach a half-closed browser.
        self._browser = self._page = self._context = self._driver = None
        session_id = self._session.session_id
        self._session.state = SessionState.CLOSING

        pages = list(getattr(context, "pages", None) or []) if context is not None else []
        if page is not None and page not in pages:
            pages.append(page)
        for open_page in pages:
            await self._best_effort("page_close", open_page.close)
        if browser is not None:
            await self._best_effort("browser_close", browser.close)
        if driver is not None:
            await self._best_effort("driver_stop", driver.stop)

        self._session.state = SessionState.CLOSED
        if self._ledger is not None:
            self._ledger.reset()
        logger.info("session_closed", session_id=session_id)

    async def _best_effort(self, step: str, action: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.wait_for(action(), timeout=self.settings.CLOSE_TIMEOUT_SECONDS)
        except Exception as e:
            logger.warning("teardown_step_failed", step=step, error=str(e), error_type=type(e).__name__)

    def snapshot(self) -> dict[str, Any]:
        """Diagnostic view of the session."""
        session = self._session
        now = self._clock()
        return {
            "session_id": session.session_id,
            "state": session.state.value,
            "created_at": session.created_at,
            "last_activity_at": session.last_activity_at,
            "idle_seconds": round(session.idle_seconds(now), 3),
            "debug_port": session.debug_port,
            "executable_path": session.executable_path,
            "crash_reason": session.crash_reason,
        }


__all__ = [
    "ACTIVE_STATES",
    "BrowserLauncher",
    "BrowserSession",
    "LaunchConfig",
    "LaunchedBrowser",
    "PlaywrightLauncher",
    "SessionManager",
    "SessionState",
]
