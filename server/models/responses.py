from typing import Any

from pydantic import BaseModel


class TaskResponse(BaseModel):
    status: str
    data: dict[str, Any]
    exit_code: int
    execution_time_ms: int


class HealthResponse(BaseModel):
    status: str
    version: str
