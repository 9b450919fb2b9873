"""Tool dispatch: the single entry point used by calling agents.

Every call goes through the same pipeline:

1. Idle sessions are closed.
2. The workflow validator checks the call is legal now; rejections never
   touch the browser.
3. Arguments are parsed into the operation's typed model.
4. The handler runs, with page work going through ``SessionManager.with_page``.
5. The outcome is recorded in the ledger and returned as a ToolResponse.
   Errors never propagate; they come back as structured ErrorPayloads.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from browserguard.browser.navigator import Navigator
from browserguard.browser.session import LaunchConfig
from browserguard.core.errors import (
    BrowserGuardError,
    CaptchaError,
    CircuitOpenError,
    ElementNotFoundError,
    InvalidArgumentsError,
    SessionBusyError,
    SessionReplacedError,
    ValidationError,
    wrap_exception,
)
from browserguard.core.logging import LogContext, get_logger
from browserguard.models.tools import (
    TOOL_ARGUMENT_MODELS,
    BrowserInitArgs,
    ClickArgs,
    FindSelectorArgs,
    GetContentArgs,
    NavigateArgs,
    SolveCaptchaArgs,
    ToolArguments,
    ToolResponse,
    TypeArgs,
    WaitArgs,
)
from browserguard.tools.context import AutomationContext, create_context
from browserguard.workflow.ledger import Outcome

logger = get_logger(__name__)

# Failures that leave the workflow state as it was.
_REJECTION_ERRORS = (ValidationError, CircuitOpenError, SessionBusyError, SessionReplacedError)

Handler = Callable[[Any], Awaitable[dict[str, Any]]]


class ToolDispatcher:
    """Routes named operations to handlers over one AutomationContext."""

    def __init__(self, context: AutomationContext | None = None) -> None:
        self.context = context or create_context()
        self._handlers: dict[str, Handler] = {
            "browser_init": self._browser_init,
            "browser_close": self._browser_close,
            "navigate": self._navigate,
            "get_content": self._get_content,
            "find_selector": self._find_selector,
            "click": self._click,
            "type": self._type,
            "wait": self._wait,
            "solve_captcha": self._solve_captcha,
            "session_status": self._session_status,
        }

    @property
    def operations(self) -> list[str]:
        """Names of all dispatchable operations."""
        return list(self._handlers)

    async def dispatch(self, operation: str, arguments: dict[str, Any] | None = None) -> ToolResponse:
        """Run one tool call.

        Args:
            operation: Operation name (e.g. "navigate")
            arguments: Raw JSON-style arguments

        Returns:
            ToolResponse with either data or a structured error
        """
        ctx = self.context
        await ctx.session.close_if_idle()

        with LogContext(operation=operation, session_id=ctx.session.session.session_id):
            try:
                ctx.validator.ensure(operation)
                args = self._parse_arguments(operation, arguments or {})
                data = await self._handlers[operation](args)
            except Exception as e:
                error = wrap_exception(e, operation=operation)
                return self._fail(operation, error, e)

            ctx.ledger.record(operation, Outcome.SUCCESS)
            logger.info("tool_succeeded", operation=operation)
            return ToolResponse.success(operation, data)

    def _parse_arguments(self, operation: str, arguments: dict[str, Any]) -> ToolArguments:
        model = TOOL_ARGUMENT_MODELS.get(operation)
        if model is None or operation not in self._handlers:
            raise InvalidArgumentsError(
                f"Unknown operation: {operation}",
                context={"operation": operation, "known_operations": self.operations},
                suggested_action="Use one of the listed operations.",
            )
        try:
            return model.model_validate({**arguments, "operation": operation})
        except PydanticValidationError as e:
            problems = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            summary = "; ".join(f"{p['field'] or 'arguments'}: {p['message']}" for p in problems)
            raise InvalidArgumentsError(
                f"Invalid arguments for {operation}: {summary}",
                context={"operation": operation, "errors": problems},
                suggested_action="Fix the listed arguments and call again.",
            ) from e

    def _fail(self, operation: str, error: BrowserGuardError, cause: Exception) -> ToolResponse:
        ledger = self.context.ledger
        if isinstance(error, _REJECTION_ERRORS):
            ledger.record(operation, Outcome.REJECTED, detail=error.message)
            logger.info("tool_rejected", operation=operation, kind=error.kind, reason=error.message)
        else:
            ledger.record(operation, Outcome.FAILURE, detail=error.message)
            if isinstance(cause, BrowserGuardError):
                logger.warning("tool_failed", operation=operation, kind=error.kind, error=error.message)
            else:
                logger.error(
                    "tool_failed_unexpectedly",
                    operation=operation,
                    kind=error.kind,
                    error=error.message,
                    error_type=type(cause).__name__,
                )
        return ToolResponse.failure(operation, error.to_payload())

    def _page_timeout(self, timeout_ms: int | None) -> float:
        """Outer operation budget, stretched for long caller-supplied timeouts."""
        budget = self.context.settings.OPERATION_TIMEOUT_SECONDS
        if timeout_ms is None:
            return budget
        return max(budget, timeout_ms / 1000 + self.context.settings.LIVENESS_TIMEOUT_SECONDS)

    async def _browser_init(self, args: BrowserInitArgs) -> dict[str, Any]:
        session_manager = self.context.session
        previous_id = session_manager.session.session_id
        config = LaunchConfig(
            headless=args.headless,
            executable_path=args.executable_path,
            cdp_endpoint=args.cdp_endpoint,
            args=list(args.args),
        )
        session = await session_manager.init(config, force=args.force)
        return {**session_manager.snapshot(), "reused": session.session_id == previous_id}

    async def _browser_close(self, args: Any) -> dict[str, Any]:
        await self.context.session.close()
        self.context.ledger.reset()
        return {"state": self.context.session.state.value}

    async def _navigate(self, args: NavigateArgs) -> dict[str, Any]:
        timeout_ms = args.timeout_ms or self.context.settings.NAVIGATION_TIMEOUT_MS
        return await self.context.session.with_page(
            lambda page: Navigator.goto(page, args.url, args.wait_until, timeout_ms),
            operation_class="navigation",
            timeout=self._page_timeout(timeout_ms),
        )

    async def _get_content(self, args: GetContentArgs) -> dict[str, Any]:
        request = args.to_request()
        engine = self.context.content_engine
        result = await self.context.session.with_page(
            lambda page: engine.extract(request, page),
            operation_class="content",
        )
        return result.model_dump(mode="json")

    async def _find_selector(self, args: FindSelectorArgs) -> dict[str, Any]:
        resolver = self.context.resolver
        resolution = await self.context.session.with_page(
            lambda page: resolver.resolve(args.selector, page, intent=args.intent, text_hint=args.text_hint),
            operation_class="content",
        )
        if not resolution.resolved:
            raise ElementNotFoundError(
                args.selector or args.text_hint or "",
                context={"intent": args.intent, "attempted": resolution.attempted},
            )
        return resolution.model_dump(mode="json")

    async def _click(self, args: ClickArgs) -> dict[str, Any]:
        timeout_ms = args.timeout_ms or Navigator.ELEMENT_TIMEOUT_MS
        return await self.context.session.with_page(
            lambda page: Navigator.click(
                page, args.selector, self.context.resolver, text_hint=args.text_hint, timeout_ms=timeout_ms
            ),
            operation_class="interaction",
        )

    async def _type(self, args: TypeArgs) -> dict[str, Any]:
        timeout_ms = args.timeout_ms or Navigator.ELEMENT_TIMEOUT_MS
        return await self.context.session.with_page(
            lambda page: Navigator.type_text(
                page,
                args.selector,
                args.text,
                self.context.resolver,
                text_hint=args.text_hint,
                clear=args.clear,
                delay_ms=args.delay_ms,
                timeout_ms=timeout_ms,
            ),
            operation_class="interaction",
        )

    async def _wait(self, args: WaitArgs) -> dict[str, Any]:
        return await self.context.session.with_page(
            lambda page: Navigator.wait_for(
                page, args.kind, args.value, self.context.resolver, state=args.state, timeout_ms=args.timeout_ms
            ),
            operation_class="interaction",
            timeout=self._page_timeout(args.timeout_ms),
        )

    async def _solve_captcha(self, args: SolveCaptchaArgs) -> dict[str, Any]:
        solver = self.context.captcha_solver
        if solver is None:
            error = CaptchaError(
                "No captcha solver is configured",
                context={"captcha_type": args.captcha_type},
                suggested_action="Configure a captcha solver or solve the challenge manually.",
            )
            error.retryable = False
            raise error

        async def solve(page: Any) -> dict[str, Any]:
            try:
                return await solver.solve(page, args.captcha_type, args.site_key)
            except BrowserGuardError:
                raise
            except Exception as e:
                raise CaptchaError(
                    f"Captcha solver failed: {e}",
                    context={"captcha_type": args.captcha_type, "error_type": type(e).__name__},
                ) from e

        result = await self.context.session.with_page(
            solve,
            operation_class="captcha",
            timeout=self._page_timeout(args.timeout_ms),
        )
        return dict(result or {})

    async def _session_status(self, args: Any) -> dict[str, Any]:
        ctx = self.context
        return {
            "session": ctx.session.snapshot(),
            "alive": await ctx.session.is_alive(),
            "circuits": ctx.breaker.snapshot(),
            "ledger": ctx.ledger.snapshot(),
        }
