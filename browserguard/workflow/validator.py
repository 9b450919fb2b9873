"""Legal-order checks consulted before every tool dispatch.

Each operation has a rule: whether it needs a ready browser session and
which operations must have succeeded first. A rejected call never reaches
the browser, and the rejection explains which predecessor is missing and
why ("browser_init was never called", "navigate failed 3 times ...").
"""

from collections.abc import Callable
from dataclasses import dataclass, field

from browserguard.browser.session import ACTIVE_STATES, SessionState
from browserguard.core.errors import ValidationError
from browserguard.core.logging import get_logger
from browserguard.workflow.ledger import Outcome, WorkflowLedger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OperationRule:
    """Preconditions of one operation."""
    requires_session: bool = True
    prerequisites: tuple[str, ...] = ()
    allowed_when_crashed: bool = False


@dataclass
class ValidationResult:
    """Outcome of a legality check."""
    ok: bool
    reason: str | None = None
    missing: list[str] = field(default_factory=list)


LIFECYCLE_RULE = OperationRule(requires_session=False, allowed_when_crashed=True)
NAVIGATION_RULE = OperationRule()
CONTENT_RULE = OperationRule(prerequisites=("navigate",))

DEFAULT_RULES: dict[str, OperationRule] = {
    "browser_init": LIFECYCLE_RULE,
    "browser_close": LIFECYCLE_RULE,
    "session_status": LIFECYCLE_RULE,
    "navigate": NAVIGATION_RULE,
    "get_content": CONTENT_RULE,
    "find_selector": CONTENT_RULE,
    "click": CONTENT_RULE,
    "type": CONTENT_RULE,
    "wait": CONTENT_RULE,
    "solve_captcha": CONTENT_RULE,
}


class WorkflowValidator:
    """Checks operations against the rule table, session state and ledger."""

    def __init__(
        self,
        ledger: WorkflowLedger,
        state_provider: Callable[[], SessionState],
        rules: dict[str, OperationRule] | None = None,
    ):
        """Initialize the validator.

        Args:
            ledger: Ledger of past outcomes
            state_provider: Returns the current session state
            rules: Rule table (defaults to DEFAULT_RULES)
        """
        self.ledger = ledger
        self._state_provider = state_provider
        self._rules = dict(DEFAULT_RULES if rules is None else rules)

    def register(self, operation: str, rule: OperationRule) -> None:
        """Add or replace the rule for ``operation``."""
        self._rules[operation] = rule

    def rule_for(self, operation: str) -> OperationRule:
        """Rule for ``operation``; unknown operations get the content rule."""
        return self._rules.get(operation, CONTENT_RULE)

    def _describe(self, operation: str, state: SessionState) -> str:
        if operation == "browser_init":
            if state == SessionState.CLOSED:
                return "the browser session was closed"
            if state in (SessionState.INITIALIZING, SessionState.CLOSING):
                return f"the browser session is {state.value}"

        failures = self.ledger.consecutive_failures(operation)
        if failures:
            noun = "time" if failures == 1 else "times"
            last_error = self.ledger.last_error(operation)
            suffix = f" (last error: {last_error})" if last_error else ""
            return f"{operation} failed {failures} {noun}{suffix}"

        last = self.ledger.last_entry(operation)
        if last is not None and last.outcome == Outcome.REJECTED:
            return f"{operation} was rejected"
        return f"{operation} was never called"

    def validate(self, operation: str) -> ValidationResult:
        """Check whether ``operation`` may run now."""
        rule = self.rule_for(operation)
        state = self._state_provider()

        if state == SessionState.CRASHED and not rule.allowed_when_crashed:
            return ValidationResult(
                ok=False,
                reason=f"{operation} rejected: the browser session crashed; call browser_init to start a new one",
                missing=["browser_init"],
            )

        missing: list[str] = []
        if rule.requires_session and state not in ACTIVE_STATES:
            missing.append("browser_init")
        if not missing:
            missing.extend(p for p in rule.prerequisites if not self.ledger.has_succeeded(p))

        if not missing:
            return ValidationResult(ok=True)

        details = "; ".join(self._describe(name, state) for name in missing)
        return ValidationResult(
            ok=False,
            reason=f"{operation} requires {', '.join(missing)}: {details}",
            missing=missing,
        )

    def ensure(self, operation: str) -> None:
        """Raise ValidationError unless ``operation`` may run now."""
        result = self.validate(operation)
        if result.ok:
            return
        logger.info("operation_rejected", operation=operation, missing=result.missing, reason=result.reason)
        raise ValidationError(
            result.reason or f"{operation} is not allowed now",
            context={"operation": operation, "missing": result.missing},
            suggested_action=f"Call {result.missing[0]} first." if result.missing else None,
        )
