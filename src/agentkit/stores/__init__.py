"""Memory store and run sink implementations."""

from agentkit.stores.file import FileMemoryStore, JsonlRunSink
from agentkit.stores.memory import InMemoryMemoryStore, InMemoryRunSink

__all__ = ["FileMemoryStore", "InMemoryMemoryStore", "InMemoryRunSink", "JsonlRunSink"]
