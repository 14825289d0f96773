"""Agent task orchestration for assisted document editing."""

__version__ = "0.1.0"
