from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.contract import ContractType

DESCRIPTION_MAX_WORDS = 150
TARGET_CONDITIONS_MAX_WORDS = 150
MIN_TARGET_PERSONS = 1
MAX_TARGET_PERSONS = 20


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split())


class Budget(BaseModel):
    minimum: float = Field(ge=0)
    maximum: float = Field(ge=0)
    currency: str = "EUR"

    @model_validator(mode="after")
    def check_range(self):
        if self.minimum > self.maximum:
            raise ValueError("Minimum budget cannot be greater than maximum budget")
        return self


class ContractBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    contract_type: str
    description: str = Field(min_length=1)
    target_conditions: Optional[str] = None
    target_persons: int = Field(ge=MIN_TARGET_PERSONS, le=MAX_TARGET_PERSONS)
    budget: Budget
    start_date: date
    end_date: date

    @field_validator("contract_type")
    @classmethod
    def check_contract_type(cls, v: str) -> str:
        if v not in ContractType.ALL:
            raise ValueError("Invalid contract type")
        return v

    @field_validator("description")
    @classmethod
    def check_description_words(cls, v: str) -> str:
        if count_words(v) > DESCRIPTION_MAX_WORDS:
            raise ValueError(f"Description cannot exceed {DESCRIPTION_MAX_WORDS} words")
        return v

    @field_validator("target_conditions")
    @classmethod
    def check_target_conditions_words(cls, v: Optional[str]) -> Optional[str]:
        if count_words(v) > TARGET_CONDITIONS_MAX_WORDS:
            raise ValueError(f"Target conditions cannot exceed {TARGET_CONDITIONS_MAX_WORDS} words")
        return v

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("End date must be after start date")
        return self


class ContractCreate(ContractBase):
    client_id: Optional[int] = None  # procurement may create on behalf of a client


class ContractUpdate(BaseModel):
    """Partial edit. `status` is accepted only so that it can be refused explicitly."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    contract_type: Optional[str] = None
    description: Optional[str] = Field(None, min_length=1)
    target_conditions: Optional[str] = None
    target_persons: Optional[int] = Field(None, ge=MIN_TARGET_PERSONS, le=MAX_TARGET_PERSONS)
    budget: Optional[Budget] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None

    @field_validator("contract_type")
    @classmethod
    def check_contract_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ContractType.ALL:
            raise ValueError("Invalid contract type")
        return v

    @field_validator("description")
    @classmethod
    def check_description_words(cls, v: Optional[str]) -> Optional[str]:
        if count_words(v) > DESCRIPTION_MAX_WORDS:
            raise ValueError(f"Description cannot exceed {DESCRIPTION_MAX_WORDS} words")
        return v

    @field_validator("target_conditions")
    @classmethod
    def check_target_conditions_words(cls, v: Optional[str]) -> Optional[str]:
        if count_words(v) > TARGET_CONDITIONS_MAX_WORDS:
            raise ValueError(f"Target conditions cannot exceed {TARGET_CONDITIONS_MAX_WORDS} words")
        return v


class ReviewRecord(BaseModel):
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class CoordinatorRecord(BaseModel):
    selected_by: Optional[int] = None
    selected_at: Optional[datetime] = None
    selected_offer_id: Optional[int] = None
    notes: Optional[str] = None


class FinalApprovalRecord(BaseModel):
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class ContractWorkflow(BaseModel):
    procurement: ReviewRecord
    legal: ReviewRecord
    coordinator: CoordinatorRecord
    final_approval: FinalApprovalRecord


class ContractResponse(BaseModel):
    id: int
    reference_number: str
    title: str
    contract_type: str
    description: str
    target_conditions: Optional[str] = None
    target_persons: int
    budget_minimum: float
    budget_maximum: float
    budget_currency: str
    start_date: date
    end_date: date
    status: str
    client_id: Optional[int] = None
    workflow: ContractWorkflow
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_stage: Optional[str] = None
    open_for_offers_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    offer_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PublicContractResponse(BaseModel):
    """What an unauthenticated provider may see of an open contract."""
    id: int
    reference_number: str
    title: str
    contract_type: str
    description: str
    target_conditions: Optional[str] = None
    target_persons: int
    budget_minimum: float
    budget_maximum: float
    budget_currency: str
    start_date: date
    end_date: date
    open_for_offers_at: Optional[datetime] = None
    offer_count: int = 0

    class Config:
        from_attributes = True


class NotesBody(BaseModel):
    notes: Optional[str] = None


class ReasonBody(BaseModel):
    reason: str = Field(min_length=1)


class OptionalReasonBody(BaseModel):
    reason: Optional[str] = None


class LegacyTransitionBody(BaseModel):
    status: str
    reason: Optional[str] = None
