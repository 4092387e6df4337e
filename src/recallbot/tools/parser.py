"""Parse and execute tool calls from LLM responses."""

from __future__ import annotations

import re
import logging
from typing import NamedTuple

from . import REPLY_TOOLS, Tool, ToolContext

_LOG = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "yes", "1", "on"}


class ToolCall(NamedTuple):
    """Represents a parsed tool call."""
    tool_name: str
    raw_args: str
    full_match: str


def parse_tool_calls(text: str) -> list[ToolCall]:
    """
    Parse tool calls from LLM response text.

    Format: TOOL_CALL: tool_name(arg1=value1, arg2=value2)

    Returns list of ToolCall objects in the order they appear.

    Handles parentheses inside quoted strings properly.
    """
    pattern = r'TOOL_CALL:\s*(\w+)\('
    matches = re.finditer(pattern, text or "", re.IGNORECASE)

    calls: list[ToolCall] = []
    for match in matches:
        tool_name = match.group(1).lower()
        start_pos = match.end()  # Position after the opening '('

        raw_args, end_pos = _extract_args(text, start_pos)

        if raw_args is not None:
            full_match = text[match.start():end_pos]
            calls.append(ToolCall(tool_name, raw_args, full_match))

    return calls


def _extract_args(text: str, start: int) -> tuple[str | None, int]:
    """
    Extract arguments from a tool call, handling quotes and nested parentheses.

    Returns:
        tuple: (raw_args_string, end_position) or (None, start) if parsing fails
    """
    in_quote = False
    quote_char = None
    paren_depth = 0
    i = start

    while i < len(text):
        char = text[i]

        if char in ('"', "'"):
            if not in_quote:
                in_quote = True
                quote_char = char
            elif char == quote_char and text[i - 1] != '\\':
                in_quote = False
                quote_char = None

        # Only count parentheses outside of quotes
        elif not in_quote:
            if char == '(':
                paren_depth += 1
            elif char == ')':
                if paren_depth == 0:
                    return text[start:i], i + 1
                paren_depth -= 1

        i += 1

    # Didn't find closing parenthesis
    return None, start


def parse_arguments(raw_args: str) -> dict[str, str]:
    """
    Parse argument string into dict, respecting quotes.

    Examples:
    - "use_full_history=true" -> {"use_full_history": "true"}
    - 'text="likes tea (green, no sugar)"' -> {"text": "likes tea (green, no sugar)"}
    - "" -> {}
    """
    if not raw_args.strip():
        return {}

    args: dict[str, str] = {}

    for part in _split_respecting_quotes(raw_args):
        if '=' not in part:
            continue
        key, value = part.split('=', 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            quote = value[0]
            value = value[1:-1].replace('\\' + quote, quote)
        args[key] = value

    return args


def _split_respecting_quotes(text: str) -> list[str]:
    """Split text by commas, but not commas inside quotes."""
    parts = []
    current = []
    in_quote = False
    quote_char = None

    for i, char in enumerate(text):
        if char in ('"', "'"):
            if not in_quote:
                in_quote = True
                quote_char = char
            elif char == quote_char and (i == 0 or text[i - 1] != '\\'):
                in_quote = False
                quote_char = None
            current.append(char)
        elif char == ',' and not in_quote:
            parts.append(''.join(current))
            current = []
        else:
            current.append(char)

    if current:
        parts.append(''.join(current))

    return [p.strip() for p in parts]


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().strip('"\'').lower() in _TRUE_VALUES


def strip_tool_calls(text: str) -> str:
    """Remove every TOOL_CALL from ``text`` and tidy the leftover whitespace."""
    for call in parse_tool_calls(text):
        text = text.replace(call.full_match, "")
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def execute_tool_call(
    tool_call: ToolCall,
    context: ToolContext,
    tools: dict[str, Tool] = REPLY_TOOLS,
) -> tuple[str, str]:
    """
    Execute a tool call and return (result, error).

    Returns:
        tuple: (result_text, error_text)
        - If successful: (result, "")
        - If error: ("", error_message)
    """
    tool_name = tool_call.tool_name

    tool = tools.get(tool_name)
    if tool is None or tool.function is None:
        return "", f"Unknown tool: {tool_name}"

    args = parse_arguments(tool_call.raw_args)

    try:
        result = tool.function(context, **args)
        return str(result), ""
    except (TypeError, ValueError) as exc:
        _LOG.warning("Tool %s called with invalid arguments: %s", tool_name, exc)
        return "", f"Invalid arguments for {tool_name}: {exc}"
    except Exception as exc:
        _LOG.exception("Tool %s execution failed", tool_name)
        return "", f"Tool execution failed: {exc}"
