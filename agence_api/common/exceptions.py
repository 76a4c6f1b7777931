"""
Typed business errors raised by the service layer.

Services never raise HTTPException directly: each error carries a stable
``code`` and the HTTP status used by the handler registered in ``main.py``.

    AgenceError
    +-- ValidationError         (422) bad input shape or range
    +-- NotFoundError           (404) missing or outside the caller's agency
    +-- InvalidStateError       (409) operation illegal for the current state
    +-- PermissionDeniedError   (403) module/action not granted
    +-- ConsistencyError        (500) ledger and invoice out of sync
        +-- ImmutableRecordError      attempt to edit/delete a ledger row
"""
from typing import Any, Dict, Optional


class AgenceError(Exception):
    code = "agence_error"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "code": self.code}
        if self.details:
            payload["context"] = {k: str(v) for k, v in self.details.items() if v is not None}
        return payload


class ValidationError(AgenceError):
    code = "validation_error"
    http_status = 422


class NotFoundError(AgenceError):
    code = "not_found"
    http_status = 404

    def __init__(self, resource: str, resource_id: Optional[Any] = None):
        message = f"{resource} introuvable"
        super().__init__(message, resource=resource, resource_id=resource_id)


class InvalidStateError(AgenceError):
    code = "invalid_state"
    http_status = 409


class PermissionDeniedError(AgenceError):
    code = "permission_denied"
    http_status = 403


class ConsistencyError(AgenceError):
    code = "consistency_error"
    http_status = 500


class ImmutableRecordError(ConsistencyError):
    code = "immutable_record"
