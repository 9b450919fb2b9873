"""Workflow state machine: operation ledger and legal-order validation."""

from browserguard.workflow.ledger import LedgerEntry, Outcome, WorkflowLedger
from browserguard.workflow.validator import (
    CONTENT_RULE,
    DEFAULT_RULES,
    OperationRule,
    ValidationResult,
    WorkflowValidator,
)

__all__ = [
    "LedgerEntry",
    "Outcome",
    "WorkflowLedger",
    "OperationRule",
    "ValidationResult",
    "WorkflowValidator",
    "CONTENT_RULE",
    "DEFAULT_RULES",
]
