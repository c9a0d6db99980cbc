"""Tracing module for per-event observability."""

from relay_bot.tracing.context import EventTrace, TraceStep
from relay_bot.tracing.store import TraceStore, TraceSummary

__all__ = ["EventTrace", "TraceStep", "TraceStore", "TraceSummary"]
