"""Tool calling system for the router and the reply model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .memory import ToolContext, remember

__all__ = [
    "Tool",
    "ToolContext",
    "ROUTER_TOOLS",
    "REPLY_TOOLS",
    "get_tool_definitions_text",
]


@dataclass
class Tool:
    """Represents a callable tool that the LLM can use."""
    name: str
    description: str
    parameters: dict[str, str]  # param_name -> description
    function: Callable[..., str] | None = None  # None for pure routing decisions


_REMEMBER = Tool(
    name="remember",
    description=(
        "Pin a fact for this chat that users explicitly asked you to keep. Pinned facts are shown"
        " to you in every later reply. Store only the fact itself, without timestamps or names of"
        " whoever asked."
    ),
    parameters={"text": "The fact to remember, as one short sentence"},
    function=remember,
)

_RESPOND = Tool(
    name="respond",
    description="Answer the current message.",
    parameters={
        "use_full_history": "true if the answer depends on older conversation history, else false",
        "use_external_retrieval": "true if the answer needs fresh facts from the web, else false",
    },
)

# Actions offered to the routing decision; exactly one is chosen.
ROUTER_TOOLS: dict[str, Tool] = {
    _REMEMBER.name: _REMEMBER,
    _RESPOND.name: _RESPOND,
}

# Tools the reply model may call while answering.
REPLY_TOOLS: dict[str, Tool] = {
    _REMEMBER.name: _REMEMBER,
}


def get_tool_definitions_text(tools: dict[str, Tool] | None = None) -> str:
    """Generate text description of ``tools`` for a system prompt."""
    tools = REPLY_TOOLS if tools is None else tools
    if not tools:
        return ""

    lines = [
        "# Available Tools",
        "",
        "To use a tool, include a line in your response with the format:",
        "TOOL_CALL: tool_name(param1=value1, param2=value2)",
        "",
        "Quote string values with double quotes.",
        "",
        "Available tools:",
        ""
    ]

    for tool in tools.values():
        lines.append(f"## {tool.name}")
        lines.append(f"{tool.description}")
        if tool.parameters:
            lines.append("")
            lines.append("Parameters:")
            for param_name, param_desc in tool.parameters.items():
                lines.append(f"- {param_name}: {param_desc}")
        else:
            lines.append("No parameters required.")
        lines.append("")

        if tool.parameters:
            example_params = ", ".join(f"{p}=..." for p in tool.parameters.keys())
            lines.append(f"Example: TOOL_CALL: {tool.name}({example_params})")
        else:
            lines.append(f"Example: TOOL_CALL: {tool.name}()")
        lines.append("")

    return "\n".join(lines)
