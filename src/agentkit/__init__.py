"""agentkit - run declarative FSM agents under a tool policy gate."""

from agentkit.compiler import CompiledPrompt, CompilerOptions, RetrievalHint, compile_prompt
from agentkit.errors import (
    AgentKitError,
    BackendError,
    ConfigurationError,
    IterationLimitExceededError,
    ManifestError,
    RunCancelledError,
    UnknownStateError,
)
from agentkit.fsm import StateMachine, TransitionOutcome
from agentkit.policy import PolicyDecision, PolicyGate
from agentkit.runtime import AgentResponse, AgentRuntime, CancelToken, RuntimeOptions
from agentkit.spec import AgentManifest, load_manifest, parse_manifest, validate_manifest_integrity

__version__ = "0.1.0"

__all__ = [
    "AgentKitError",
    "AgentManifest",
    "AgentResponse",
    "AgentRuntime",
    "BackendError",
    "CancelToken",
    "CompiledPrompt",
    "CompilerOptions",
    "ConfigurationError",
    "IterationLimitExceededError",
    "ManifestError",
    "PolicyDecision",
    "PolicyGate",
    "RetrievalHint",
    "RunCancelledError",
    "RuntimeOptions",
    "StateMachine",
    "TransitionOutcome",
    "UnknownStateError",
    "compile_prompt",
    "load_manifest",
    "parse_manifest",
    "validate_manifest_integrity",
]
