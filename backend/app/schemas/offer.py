import json
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.contract import ContractResponse


class DeliverableIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None


class ProviderIn(BaseModel):
    email: str
    name: str = Field(min_length=1, max_length=200)
    category: str = Field(min_length=1, max_length=100)
    company_name: Optional[str] = Field(None, max_length=200)
    role: Optional[str] = Field(None, max_length=100)
    organization: Optional[str] = Field(None, max_length=200)
    tags: List[str] = []
    rate_min: float = Field(0, ge=0)
    rate_max: float = Field(0, ge=0)
    phone: Optional[str] = None


class OfferIn(BaseModel):
    amount: float = Field(ge=0)
    currency: str = "EUR"
    proposed_start_date: date
    proposed_end_date: date
    description: str = Field(min_length=1, max_length=2000)
    deliverables: List[DeliverableIn] = []
    terms: Optional[str] = Field(None, max_length=1500)

    @model_validator(mode="after")
    def check_timeline(self):
        if self.proposed_start_date >= self.proposed_end_date:
            raise ValueError("End date must be after start date")
        return self


class OfferSubmission(BaseModel):
    provider: ProviderIn
    offer: OfferIn


class OfferResponse(BaseModel):
    id: int
    contract_id: int
    provider_id: int
    provider_company_name: Optional[str] = None
    provider_role: Optional[str] = None
    provider_email: str
    provider_category: Optional[str] = None
    amount: float
    currency: str
    proposed_start_date: date
    proposed_end_date: date
    description: str
    deliverables: Optional[List[Any]] = None
    terms: Optional[str] = None
    status: str
    selected_at: Optional[datetime] = None
    selected_by: Optional[int] = None
    selection_notes: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("deliverables", mode="before")
    @classmethod
    def parse_json_list(cls, v: Any) -> Optional[List[Any]]:
        if v is None:
            return None
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            try:
                out = json.loads(v)
                return out if isinstance(out, list) else None
            except (TypeError, json.JSONDecodeError):
                return None
        return None


class ProviderRef(BaseModel):
    id: int
    name: str
    email: str
    is_new: bool = False


class ContractRef(BaseModel):
    id: int
    reference_number: str
    title: str

    class Config:
        from_attributes = True


class OfferSubmitResponse(BaseModel):
    offer: OfferResponse
    provider: ProviderRef
    contract: ContractRef


class SelectOfferResponse(BaseModel):
    contract: ContractResponse
    selected_offer: OfferResponse


class WithdrawBody(BaseModel):
    provider_email: str
