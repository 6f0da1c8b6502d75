"""Reserved tools handled inside the engine."""

from __future__ import annotations

from typing import Any

from loguru import logger

from agentkit.runtime.protocols import MemoryStore
from agentkit.types import ToolResult

NOTES_NAMESPACE = "notes"
NOT_IMPLEMENTED = "not_implemented"


class InternalTools:
    """Knowledge-base stubs and notes backed by long-term memory."""

    def __init__(self, memory: MemoryStore) -> None:
        self._memory = memory

    async def run(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        try:
            match name:
                case "kb.search":
                    return ToolResult.ok({"status": NOT_IMPLEMENTED, "results": [], "message": "KB search not implemented"})
                case "kb.open":
                    return ToolResult.ok({"status": NOT_IMPLEMENTED, "content": "", "message": "KB open not implemented"})
                case "notes.write":
                    path = _require_path(arguments)
                    await self._memory.set_long_term_memory(NOTES_NAMESPACE, path, arguments.get("content"))
                    return ToolResult.ok({"written": True, "path": path})
                case "notes.read":
                    path = _require_path(arguments)
                    content = await self._memory.get_long_term_memory(NOTES_NAMESPACE, path)
                    return ToolResult.ok({"content": content, "path": path})
                case _:
                    return ToolResult.fail(f"Unknown internal tool: {name}")
        except ValueError as exc:
            return ToolResult.fail(str(exc))
        except Exception as exc:
            logger.exception("tool.internal.error name={}", name)
            return ToolResult.fail(f"{type(exc).__name__}: {exc!s}")


def _require_path(arguments: dict[str, Any]) -> str:
    path = arguments.get("path")
    if not isinstance(path, str) or not path.strip():
        raise ValueError("argument 'path' must be a non-empty string")
    return path.strip()
