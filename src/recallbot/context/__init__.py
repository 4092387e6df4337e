"""Context assembly and message rendering for generation requests."""

from .assembler import AssembledContext, ContextAssembler, LabeledSummary
from .formatting import format_message, format_user_display_name, sanitize

__all__ = [
    "AssembledContext",
    "ContextAssembler",
    "LabeledSummary",
    "format_message",
    "format_user_display_name",
    "sanitize",
]
