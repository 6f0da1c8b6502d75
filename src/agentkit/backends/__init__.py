"""Model backends."""

from agentkit.backends.echo import EchoBackend
from agentkit.backends.openai_compat import OpenAIBackend

__all__ = ["EchoBackend", "OpenAIBackend"]
