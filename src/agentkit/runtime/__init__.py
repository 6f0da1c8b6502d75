"""Agent execution runtime."""

from agentkit.runtime.cancel import CancelToken
from agentkit.runtime.engine import AgentResponse, AgentRuntime
from agentkit.runtime.options import CostTable, RuntimeOptions
from agentkit.runtime.protocols import MemoryStore, ModelBackend, RunSink, ToolExecutor
from agentkit.runtime.streaming import StreamAccumulator, StreamEvent, collect_stream

__all__ = [
    "AgentResponse",
    "AgentRuntime",
    "CancelToken",
    "CostTable",
    "MemoryStore",
    "ModelBackend",
    "RunSink",
    "RuntimeOptions",
    "StreamAccumulator",
    "StreamEvent",
    "ToolExecutor",
    "collect_stream",
]
