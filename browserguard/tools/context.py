"""Owned, injectable automation context.

Everything that would otherwise be process-wide state (the session, the
breaker, the ledger) lives on one AutomationContext, so tests can build as
many independent instances as they need.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from browserguard.browser.circuit_breaker import CircuitBreaker
from browserguard.browser.selector_resolver import SelectorResolver
from browserguard.browser.session import BrowserLauncher, SessionManager
from browserguard.content.strategy import ContentStrategyEngine
from browserguard.content.token_budget import TokenEstimator
from browserguard.core.config import Settings, get_settings
from browserguard.workflow.ledger import WorkflowLedger
from browserguard.workflow.validator import WorkflowValidator


class CaptchaSolver(Protocol):
    """External captcha-solving capability."""

    async def solve(self, page: Any, captcha_type: str, site_key: str | None) -> dict[str, Any]:
        ...


@dataclass
class AutomationContext:
    """All components of one automation session."""
    settings: Settings
    clock: Callable[[], float]
    breaker: CircuitBreaker
    ledger: WorkflowLedger
    validator: WorkflowValidator
    session: SessionManager
    estimator: TokenEstimator
    resolver: SelectorResolver
    content_engine: ContentStrategyEngine
    captcha_solver: CaptchaSolver | None = None


def create_context(
    settings: Settings | None = None,
    launcher: BrowserLauncher | None = None,
    clock: Callable[[], float] | None = None,
    captcha_solver: CaptchaSolver | None = None,
) -> AutomationContext:
    """Wire up a fresh context.

    Args:
        settings: Settings (defaults to get_settings())
        launcher: Browser launcher (defaults to PlaywrightLauncher)
        clock: Monotonic clock shared by the breaker and the session
        captcha_solver: Optional external captcha solver

    Returns:
        AutomationContext with independent state
    """
    settings = settings or get_settings()
    clock = clock or time.monotonic

    breaker = CircuitBreaker(
        failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
        cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
        max_cooldown_seconds=settings.CIRCUIT_MAX_COOLDOWN_SECONDS,
        clock=clock,
    )
    ledger = WorkflowLedger(capacity=settings.LEDGER_CAPACITY)
    session = SessionManager(
        settings=settings,
        breaker=breaker,
        ledger=ledger,
        launcher=launcher,
        clock=clock,
    )
    validator = WorkflowValidator(ledger, lambda: session.state)
    estimator = TokenEstimator(chars_per_token=settings.CHARS_PER_TOKEN)
    resolver = SelectorResolver(settings)
    content_engine = ContentStrategyEngine(settings, estimator=estimator, resolver=resolver)

    return AutomationContext(
        settings=settings,
        clock=clock,
        breaker=breaker,
        ledger=ledger,
        validator=validator,
        session=session,
        estimator=estimator,
        resolver=resolver,
        content_engine=content_engine,
        captcha_solver=captcha_solver,
    )
