import json
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator


class ProviderResponse(BaseModel):
    id: int
    name: str
    organization: Optional[str] = None
    email: str
    category: str
    tags: List[str] = []
    rate_min: float = 0
    rate_max: float = 0
    rating: float = 0
    reviews_count: int = 0
    tasks_completed: int = 0
    availability: bool = True
    verified: bool = False
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v: Any) -> List[str]:
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            try:
                out = json.loads(v)
                return out if isinstance(out, list) else []
            except (TypeError, json.JSONDecodeError):
                return []
        return []


class AvailabilityBody(BaseModel):
    available: bool
