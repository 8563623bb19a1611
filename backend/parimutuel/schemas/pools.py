from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class CreateTestPoolRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    asset: str = "BTC"
    interval_seconds: int = Field(default=300, ge=60)
    join_window_seconds: int = Field(default=120, ge=30)
    interval_key: str | None = None
    lock_buffer_seconds: int = Field(default=60, ge=1)


class PoolOut(BaseModel):
    id: UUID
    pool_seed: str
    pool_address: str | None
    asset: str
    interval_key: str
    duration_seconds: int
    status: str
    lock_time: datetime
    start_time: datetime
    end_time: datetime
    strike_price: int | None
    final_price: int | None
    total_up: int
    total_down: int
    winner: str | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}

    # Amounts can exceed 2**53, so they go over the wire as strings.
    @field_serializer("strike_price", "final_price", "total_up", "total_down")
    def _amount_as_string(self, value: int | None) -> str | None:
        return str(value) if value is not None else None


class SchedulerStatusOut(BaseModel):
    is_running: bool
    job_count: int
    authority: str | None
