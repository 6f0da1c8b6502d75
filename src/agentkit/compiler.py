"""Deterministic prompt compilation for one agent state.

``compile_prompt`` is a pure function of its inputs: the same manifest,
state and options always produce byte-identical output, so compiled prompts
can be snapshotted in evaluations.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from agentkit.errors import UnknownStateError
from agentkit.spec.models import (
    INTERNAL_TOOL_DESCRIPTIONS,
    INTERNAL_TOOL_NAMES,
    AgentManifest,
    InternalTool,
    State,
    ToolDefinition,
    ToolParameter,
)
from agentkit.types import ToolChoice

SECTION_SEPARATOR = "\n\n---\n\n"
DEFAULT_MAX_TOOL_DESCRIPTION_LENGTH = 500
ELLIPSIS = "..."
ROLE_HEADINGS: tuple[tuple[str, str], ...] = (
    ("system", "Directives"),
    ("context", "Context"),
    ("instructions", "Instructions"),
    ("examples", "Examples"),
)

INTERNAL_TOOLS: dict[str, InternalTool] = {
    "kb.search": InternalTool(
        name="kb.search",
        description=INTERNAL_TOOL_DESCRIPTIONS["kb.search"],
        parameters={
            "query": ToolParameter(type="string", required=True),
            "topK": ToolParameter(type="number"),
        },
    ),
    "kb.open": InternalTool(
        name="kb.open",
        description=INTERNAL_TOOL_DESCRIPTIONS["kb.open"],
        parameters={
            "docId": ToolParameter(type="string", required=True),
            "chunkIds": ToolParameter(type="array", items=ToolParameter(type="string")),
        },
    ),
    "notes.read": InternalTool(
        name="notes.read",
        description=INTERNAL_TOOL_DESCRIPTIONS["notes.read"],
        parameters={"path": ToolParameter(type="string", required=True)},
    ),
    "notes.write": InternalTool(
        name="notes.write",
        description=INTERNAL_TOOL_DESCRIPTIONS["notes.write"],
        parameters={
            "path": ToolParameter(type="string", required=True),
            "content": ToolParameter(type="string", required=True),
        },
    ),
}


@dataclass(frozen=True)
class RetrievalHint:
    """Pointer to a retrievable resource. Content is never inlined."""

    type: Literal["document", "chunk", "memory"]
    id: str
    relevance: float
    path: str | None = None


@dataclass(frozen=True)
class CompilerOptions:
    include_examples: bool = True
    max_tool_description_length: int = DEFAULT_MAX_TOOL_DESCRIPTION_LENGTH
    retrieval_hints: tuple[RetrievalHint, ...] = ()


@dataclass(frozen=True)
class CompiledPrompt:
    system: str
    tools: tuple[ToolDefinition, ...]
    tool_choice: ToolChoice
    allowed_tool_names: tuple[str, ...]
    retrieval_hints: tuple[RetrievalHint, ...] = field(default_factory=tuple)


def compile_prompt(manifest: AgentManifest, state_id: str, options: CompilerOptions | None = None) -> CompiledPrompt:
    """Compile the prompt bundle for ``state_id``."""
    options = options or CompilerOptions()
    state = manifest.get_state(state_id)
    if state is None:
        raise UnknownStateError(state_id)

    declared = declared_tools(manifest, state)
    tools = _visible_tools(manifest, declared)
    hints = _sorted_hints(options.retrieval_hints)

    sections = [
        _identity_section(manifest),
        _global_rules_section(manifest),
        _state_section(state, options),
    ]
    if state.transitions:
        sections.append(_transition_section(state))
    sections.append(_tool_appendix(tools, options))
    if hints:
        sections.append(_retrieval_hints_section(hints))

    return CompiledPrompt(
        system=SECTION_SEPARATOR.join(sections),
        tools=tools,
        tool_choice="none" if not declared else "auto",
        allowed_tool_names=tuple(tool.name for tool in tools),
        retrieval_hints=hints,
    )


def declared_tools(manifest: AgentManifest, state: State) -> tuple[str, ...]:
    """Global tools then state tools, de-duplicated in declaration order."""
    return tuple(dict.fromkeys((*manifest.fsm.global_allowed_tools, *state.allowed_tools)))


def shorten_description(text: str, width: int) -> str:
    """Shorten ``text`` to ``width`` characters on a word boundary, marking the cut with an ellipsis."""
    if len(text) <= width:
        return text
    available = width - len(ELLIPSIS)
    if available <= 0:
        return ELLIPSIS
    cut = text[:available]
    if not text[available].isspace() and " " in cut:
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip() + ELLIPSIS


def _visible_tools(manifest: AgentManifest, declared: Sequence[str]) -> tuple[ToolDefinition, ...]:
    registry = {tool.name: tool for tool in manifest.tools.tools}
    names = [name for name in declared if name in registry and name not in INTERNAL_TOOL_NAMES]
    order = manifest.tools.serialization_order
    if order:
        rank = {name: idx for idx, name in enumerate(order)}
        names.sort(key=lambda name: (rank.get(name, len(rank)), name))
    else:
        names.sort()

    visible: list[ToolDefinition] = [registry[name] for name in names]
    for name in INTERNAL_TOOL_NAMES:
        definition = registry.get(name)
        visible.append(definition if isinstance(definition, InternalTool) else INTERNAL_TOOLS[name])
    return tuple(visible)


def _sorted_hints(hints: Sequence[RetrievalHint]) -> tuple[RetrievalHint, ...]:
    return tuple(sorted(hints, key=lambda hint: (-hint.relevance, hint.id)))


def _identity_section(manifest: AgentManifest) -> str:
    return "\n".join([
        "# Agent Identity",
        "",
        f"**Name:** {manifest.metadata.name}",
        f"**Domain:** {manifest.metadata.domain}",
        f"**Purpose:** {manifest.prd.purpose}",
        "",
        "## Scope",
        manifest.prd.scope,
        "",
        "## Context",
        manifest.prd.context_problem,
    ])


def _global_rules_section(manifest: AgentManifest) -> str:
    rules = [
        "# Global Rules",
        "",
        "1. Always stay within your defined scope and purpose.",
        "2. Only use tools that are explicitly allowed for your current state.",
        "3. Respect data classification and privacy requirements.",
        f"4. Risk level: {manifest.metadata.risk_level} - act accordingly.",
        f"5. Data classification: {manifest.metadata.data_classification}",
    ]
    if manifest.memory.pii_flags:
        kinds = ", ".join(sorted({flag.type for flag in manifest.memory.pii_flags}))
        rules.append(f"6. Handle PII data ({kinds}) with appropriate care and encryption.")
    return "\n".join(rules)


def _state_section(state: State, options: CompilerOptions) -> str:
    lines = [f"# Current State: {state.name}"]
    if state.description:
        lines.extend(["", state.description])

    ordered = sorted(state.prompt_blocks, key=lambda block: block.priority, reverse=True)
    for role, heading in ROLE_HEADINGS:
        if role == "examples" and not options.include_examples:
            continue
        blocks = [block.content for block in ordered if block.role == role]
        if not blocks:
            continue
        lines.extend(["", f"## {heading}", *blocks])

    if state.memory_writes:
        lines.extend(["", "## Memory"])
        for write in state.memory_writes:
            suffix = f": {write.description}" if write.description else ""
            lines.append(f"- {write.type} `{write.path}`{suffix}")

    if state.is_terminal:
        lines.extend(["", "**This is a terminal state. Complete the interaction appropriately.**"])
    return "\n".join(lines)


def _transition_section(state: State) -> str:
    lines = ["# Possible Transitions", ""]
    for transition in state.transitions:
        lines.append(f'- When {transition.when.type}: "{transition.when.value}" -> go to {transition.to_state}')
    return "\n".join(lines)


def _tool_appendix(tools: Sequence[ToolDefinition], options: CompilerOptions) -> str:
    lines = ["# Available Tools"]
    for tool in tools:
        if isinstance(tool, InternalTool):
            continue
        lines.extend([
            "",
            f"## {tool.name}",
            f"Type: {tool.type}",
            f"Description: {shorten_description(tool.description, options.max_tool_description_length)}",
        ])
        if tool.parameters:
            lines.append("Parameters:")
            for name in sorted(tool.parameters):
                param = tool.parameters[name]
                required = " (required)" if param.required else ""
                lines.append(f"  - {name}: {param.type}{required}")

    lines.extend(["", "## Internal Tools"])
    for tool in tools:
        if isinstance(tool, InternalTool):
            description = shorten_description(tool.description, options.max_tool_description_length)
            lines.append(f"- {tool.name}: {description}")
    return "\n".join(lines)


def _retrieval_hints_section(hints: Sequence[RetrievalHint]) -> str:
    lines = ["# Retrieval Hints", "", "The following resources may be relevant:"]
    for hint in hints:
        path = f" ({hint.path})" if hint.path else ""
        lines.append(f"- [{hint.type}] {hint.id}{path}")
    lines.extend(["", "Use kb.open to retrieve full content when needed."])
    return "\n".join(lines)
