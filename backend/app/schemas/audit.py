import json
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class AuditLogEntryResponse(BaseModel):
    id: int
    action: str
    entity_type: str
    entity_id: int
    performed_by: Optional[int] = None
    changes: Optional[dict] = None
    # ORM attribute is metadata_json; `metadata` on a declarative model is the table MetaData
    metadata: Optional[dict] = Field(None, validation_alias=AliasChoices("metadata_json", "metadata"))
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("changes", "metadata", mode="before")
    @classmethod
    def parse_json_object(cls, v: Any) -> Optional[dict]:
        if v is None or isinstance(v, dict):
            return v
        if isinstance(v, str):
            try:
                out = json.loads(v)
                return out if isinstance(out, dict) else None
            except (TypeError, json.JSONDecodeError):
                return None
        return None
