from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class DomainError(Exception):
    code: str
    message: str
    status_code: int
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(DomainError):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            code="not_found",
            message=f"{entity} {entity_id} not found",
            status_code=404,
            details={"entity": entity, "id": entity_id},
        )


class InvalidStateError(DomainError):
    def __init__(self, message: str, *, current: str | None = None, target: str | None = None, **details: Any):
        payload = dict(details)
        if current is not None:
            payload["current"] = current
        if target is not None:
            payload["target"] = target
        super().__init__(code="invalid_state", message=message, status_code=409, details=payload)


class NoEligibleClosersError(DomainError):
    def __init__(self, unassigned_count: int):
        super().__init__(
            code="no_eligible_closers",
            message="No active, approved closers available for assignment",
            status_code=409,
            details={"unassigned_count": unassigned_count},
        )


class PersistenceFailureError(DomainError):
    def __init__(self, message: str = "Persistence store unavailable"):
        super().__init__(code="persistence_failure", message=message, status_code=503)
