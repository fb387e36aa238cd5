"""
System-instruction synthesis for conversation requests.
"""

from pathlib import Path
from typing import Iterable, Optional

from prompt_relay.adapters.schema import CustomPrompt, ToolDefinition

DEFAULT_SYSTEM_PROMPT: str = (
    "You are a helpful assistant embedded in a note-taking application. "
    "Answer in Markdown. Be accurate and concise, and say so when you are unsure."
)

TOOLS_HEADER: str = "## Available Tools"
MEMORY_HEADER: str = "## Context From Memory File"
CUSTOM_HEADER: str = "## Additional Instructions"


def load_system_prompt(file_path: Optional[str] = None) -> str:
    """Load system prompt from file or return default."""
    candidates = []
    if file_path:
        candidates.append(Path(file_path))
    # Default file in package directory
    candidates.append(Path(__file__).parent / "system_prompt.txt")
    for path in candidates:
        if path.exists():
            content = path.read_text(encoding="utf-8").strip()
            if content:  # Only use file if it has content
                return content
    return DEFAULT_SYSTEM_PROMPT


def build_system_instruction(
    available_tools: Iterable[ToolDefinition] = (),
    custom_prompt: Optional[CustomPrompt] = None,
    memory: Optional[str] = None,
    base_prompt: Optional[str] = None,
) -> str:
    """
    Build the system instruction for a conversation turn.

    An overriding custom prompt is returned as-is. Otherwise the base
    prompt is followed by a tool list, memory content and the custom
    prompt, each only when present.
    """
    if custom_prompt and custom_prompt.override_system_prompt:
        return custom_prompt.content

    sections = [base_prompt or load_system_prompt()]

    tools = list(available_tools)
    if tools:
        lines = [TOOLS_HEADER, "You can call these tools when they help answer the request:"]
        for tool in tools:
            lines.append(f"- `{tool.name}`: {tool.description}" if tool.description else f"- `{tool.name}`")
        sections.append("\n".join(lines))

    if memory and memory.strip():
        sections.append(f"{MEMORY_HEADER}\n{memory.strip()}")

    if custom_prompt and custom_prompt.content.strip():
        sections.append(f"{CUSTOM_HEADER}\n{custom_prompt.content.strip()}")

    return "\n\n".join(sections)
