"""Tool executors."""

from agentkit.executors.http import HttpToolExecutor
from agentkit.executors.routing import McpHandler, RoutingToolExecutor

__all__ = ["HttpToolExecutor", "McpHandler", "RoutingToolExecutor"]
