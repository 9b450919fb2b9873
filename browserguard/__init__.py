"""browserguard: session and content-delivery resilience for LLM browser tools."""

__version__ = "0.1.0"
