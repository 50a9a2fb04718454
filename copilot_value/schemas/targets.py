"""Target value schemas."""

from typing import Any

from pydantic import BaseModel, Field


class Target(BaseModel):
    """A current/target/max triple for one metric."""

    current: float = 0
    target: float = 0
    max: float = 0


class TargetValuesPayload(BaseModel):
    """Targets grouped by scope. Keys are metric names (``seats``, ``dailySuggestions``...)."""

    org: dict[str, Target] = Field(default_factory=dict)
    user: dict[str, Target] = Field(default_factory=dict)
    impact: dict[str, Target] = Field(default_factory=dict)


class CalculationLogEntry(BaseModel):
    """Inputs, formula and result of one calculated target."""

    name: str
    inputs: dict[str, Any]
    formula: str
    result: Any


class CalculatedTargetsResponse(BaseModel):
    """Result of GET /targets/calculate."""

    targets: TargetValuesPayload
    logs: list[CalculationLogEntry] | None = None
