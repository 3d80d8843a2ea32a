"""
Follow-Through Tracer

Human-readable, step-by-step console trace of how data moves through the
pipelines, enabled with FOLLOW_THROUGH=true. This is a developer aid only;
the durable record of every run lives in run_tracer.
"""
import logging
from datetime import datetime
from typing import Any

from .config import settings

tracer = logging.getLogger("cognimem.followthrough")


def _preview(data: Any, max_len: int = 60) -> str:
    """Short single-line preview of a value."""
    if data is None:
        return "<None>"
    text = " ".join(str(data).split())
    if len(text) > max_len:
        return f"{text[:max_len]}..."
    return text


def _line(icon: str, module: str, detail: str) -> str:
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    return f"[{timestamp}] {icon} [{module}] {detail}"


def trace_section(title: str):
    """Divider for a pipeline stage."""
    if not settings.follow_through:
        return
    bar = "─" * 40
    tracer.info(f"\n{bar}\n  {title.upper()}\n{bar}")


def trace_step(module: str, description: str):
    """A general step in processing."""
    if not settings.follow_through:
        return
    tracer.info(_line("•", module, description))


def trace_call(module: str, function: str, args_preview: Any = None):
    """A call into a collaborator (model, tier, store)."""
    if not settings.follow_through:
        return
    detail = f"calling {function}()"
    if args_preview is not None:
        detail += f" with {_preview(args_preview)}"
    tracer.info(_line("▶", module, detail))


def trace_result(module: str, function: str, success: bool, result_preview: Any = None):
    """Outcome of a call."""
    if not settings.follow_through:
        return
    detail = f"{function}() {'✓' if success else '✗ FAILED'}"
    if result_preview is not None:
        detail += f" => {_preview(result_preview)}"
    tracer.info(_line("◀", module, detail))


def trace_tier(tier: str, status: str, size: int = 0):
    """One memory tier's contribution to a context assembly."""
    if not settings.follow_through:
        return
    icon = {"success": "✓", "null": "∅", "error": "✗"}.get(status, "?")
    tracer.info(_line(icon, f"tier.{tier}", f"{status} ({size} items)"))


def setup_follow_through_logging():
    """Attach a bare console handler to the follow-through logger."""
    if not settings.follow_through or tracer.handlers:
        return
    handler = logging.StreamHandler()
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(message)s"))

    tracer.addHandler(handler)
    tracer.setLevel(logging.INFO)
    tracer.propagate = False  # Keep the trace off the root logger

    tracer.info("=" * 50 + "\n  FOLLOW-THROUGH MODE ENABLED\n" + "=" * 50)
