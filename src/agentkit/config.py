"""Configuration management for agentkit."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentkit.runtime.options import CostTable, RuntimeOptions


class Settings(BaseSettings):
    """Application settings, read from ``AGENTKIT_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTKIT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Model backend
    model: str = Field(default="gpt-4o-mini", description="Model name sent to the OpenAI-compatible API")
    api_key: str | None = Field(default=None, description="API key for the model provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    supports_tool_choice: bool = Field(default=True, description="Whether the backend enforces tool_choice")
    max_tokens: int | None = Field(default=None, description="Maximum completion tokens per call")
    temperature: float | None = Field(default=None, description="Sampling temperature")
    model_timeout_seconds: float = Field(default=90, gt=0, description="Timeout for one model call")
    tool_timeout_seconds: float = Field(default=30, gt=0, description="Timeout for one tool call")

    # Loop limits
    max_iterations_per_state: int = Field(default=10, ge=1)
    max_total_iterations: int = Field(default=50, ge=1)
    enable_policy_gate: bool = True
    history_window: int = Field(default=20, ge=1)
    max_tool_description_length: int = Field(default=500, ge=4)

    # Pricing
    cost_prompt_per_token: float = Field(default=0.00001, ge=0)
    cost_completion_per_token: float = Field(default=0.00003, ge=0)

    home: Path = Field(default=Path.home() / ".agentkit", description="Directory for sessions, memory and runs")

    def runtime_options(self) -> RuntimeOptions:
        return RuntimeOptions(
            max_iterations_per_state=self.max_iterations_per_state,
            max_total_iterations=self.max_total_iterations,
            enable_policy_gate=self.enable_policy_gate,
            cost_per_token=CostTable(prompt=self.cost_prompt_per_token, completion=self.cost_completion_per_token),
            history_window=self.history_window,
            max_tool_description_length=self.max_tool_description_length,
            model_timeout_seconds=self.model_timeout_seconds,
            tool_timeout_seconds=self.tool_timeout_seconds,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


def load_settings(home: Path | None = None) -> Settings:
    """Build settings; ``home`` overrides the environment when given."""
    if home is None:
        return Settings()
    return Settings(home=home)
