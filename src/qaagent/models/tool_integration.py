"""Tool integration models for the agent engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from .actions import AgentActionType

if TYPE_CHECKING:
    from ..config.settings import Settings


class ToolParameter(BaseModel):
    """Detailed parameter definition for tools."""

    name: str = Field(description="Parameter name")
    type: str = Field(description="Parameter type (string, number, integer, boolean, object, array)")
    description: str = Field(description="Parameter description")
    required: bool = Field(default=False, description="Whether parameter is required")
    default: Any = Field(default=None, description="Default value if not provided")
    enum: list[Any] | None = Field(default=None, description="Allowed values (if constrained)")
    min_value: float | None = Field(default=None, description="Minimum value for numbers")
    max_value: float | None = Field(default=None, description="Maximum value for numbers")
    min_length: int | None = Field(default=None, description="Minimum length for strings/arrays")
    max_length: int | None = Field(default=None, description="Maximum length for strings/arrays")

    def describe(self) -> str:
        """Schema line used in the tool catalog."""
        requirement = "required" if self.required else "optional"
        return f"{self.type} ({requirement}) - {self.description}"


class ToolDefinition(BaseModel):
    """Definition of a tool bound to one action type."""

    action_type: AgentActionType = Field(description="Action this tool implements")
    name: str = Field(description="Human-readable tool name")
    description: str = Field(description="Tool functionality description")
    version: str = Field(default="1.0.0", description="Tool version (semver format)")
    parameters: dict[str, ToolParameter] = Field(
        default_factory=dict,
        description="Detailed parameter definitions",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Tool name cannot be empty")
        return v


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker behavior."""

    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Failures before opening circuit",
    )
    success_threshold: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Successes needed to close circuit",
    )
    timeout_seconds: float = Field(
        default=60.0,
        ge=0.0,
        le=3600.0,
        description="Time before attempting recovery",
    )
    half_open_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Max attempts in half-open state",
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> CircuitBreakerConfig:
        return cls(
            failure_threshold=settings.tool_circuit_failure_threshold,
            success_threshold=settings.tool_circuit_success_threshold,
            timeout_seconds=settings.tool_circuit_timeout_seconds,
        )
