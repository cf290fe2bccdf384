"""
Typed errors raised by the contract workflow core.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
the API layer answers with, so callers catch by type and never parse messages:

    ContractFlowError
    +-- ValidationError              VALIDATION_FAILED       422
    +-- NotFoundError                NOT_FOUND               404
    +-- ForbiddenError               FORBIDDEN               403
    +-- WorkflowError                                        409
    |   +-- InvalidTransitionError   INVALID_TRANSITION
    |   +-- ConcurrentModificationError
    |   +-- ContractLockedError
    +-- OfferError                                           409
    |   +-- NotOpenForOffersError
    |   +-- DuplicateOfferError
    |   +-- NotSelectableError
    |   +-- NotWithdrawableError
    +-- AuditImmutableError          AUDIT_IMMUTABLE         500

No error leaves partial state behind: services roll back before re-raising.
"""


class ContractFlowError(Exception):
    """Base class for all domain errors."""

    code: str = "CONTRACTFLOW_ERROR"
    status_code: int = 400


class ValidationError(ContractFlowError):
    """A field is malformed or out of range."""

    code = "VALIDATION_FAILED"
    status_code = 422

    def __init__(self, message: str, fields: list[str] | None = None):
        self.fields = fields or []
        super().__init__(message)


class NotFoundError(ContractFlowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ForbiddenError(ContractFlowError):
    code = "FORBIDDEN"
    status_code = 403


# Workflow errors


class WorkflowError(ContractFlowError):
    code = "WORKFLOW_ERROR"
    status_code = 409


class InvalidTransitionError(WorkflowError):
    """The requested (from, to) pair is not in the transition table."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str | None, message: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message or f"Invalid status transition from {from_status} to {to_status}")


class ConcurrentModificationError(WorkflowError):
    """The contract row changed between read and write."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, contract_id):
        self.contract_id = contract_id
        super().__init__(
            f"Contract {contract_id} was modified by another transaction; reload and retry"
        )


class ContractLockedError(WorkflowError):
    code = "CONTRACT_LOCKED"

    def __init__(self, contract_id, status: str):
        self.contract_id = contract_id
        self.status = status
        super().__init__(f"Contract {contract_id} cannot be edited in status {status}")


# Offer errors


class OfferError(ContractFlowError):
    code = "OFFER_ERROR"
    status_code = 409


class NotOpenForOffersError(OfferError):
    code = "NOT_OPEN_FOR_OFFERS"

    def __init__(self, contract_id):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} is not open for offers")


class DuplicateOfferError(OfferError):
    code = "DUPLICATE_OFFER"

    def __init__(self, contract_id, provider_email: str):
        self.contract_id = contract_id
        self.provider_email = provider_email
        super().__init__(
            f"Provider {provider_email} has already submitted an offer for contract {contract_id}"
        )


class NotSelectableError(OfferError):
    code = "NOT_SELECTABLE"


class NotWithdrawableError(OfferError):
    code = "NOT_WITHDRAWABLE"

    def __init__(self, offer_id, status: str):
        self.offer_id = offer_id
        self.status = status
        super().__init__(f"Only pending offers can be withdrawn (offer {offer_id} is {status})")


class AuditImmutableError(ContractFlowError):
    """Audit entries are append-only."""

    code = "AUDIT_IMMUTABLE"
    status_code = 500

    def __init__(self, entry_id, operation: str):
        self.entry_id = entry_id
        self.operation = operation
        super().__init__(f"Audit log entry {entry_id} cannot be {operation}")
