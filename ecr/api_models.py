from __future__ import annotations

from pydantic import BaseModel, Field


class UnitModel(BaseModel):
    key: str = Field(..., description="namespace/name of the pod")
    state: str = Field(..., description="Idle|Evaluating|Acting")
    essential: str = ""
    uid: str = ""
    attempts: int = 0
    last_outcome: str = Field("", description="done|gone|skipped|retry|failed|cancelled")
    updated_at: str = ""


class UnitsResponse(BaseModel):
    action: str
    running: bool
    units: list[UnitModel]
    counters: dict[str, int]
    tracked_pods: int


class EventModel(BaseModel):
    id: int
    ts: str
    level: str
    namespace: str | None = None
    pod: str | None = None
    message: str


class ActionModel(BaseModel):
    id: int
    ts: str
    namespace: str
    pod: str
    action: str
    outcome: str
    detail: str | None = None
