"""Domain events emitted by the booking engines.

Events are handed to an external dispatcher (email, websocket, pub/sub).
Their delivery and formatting are the dispatcher's concern.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventName(str, Enum):
    """Names of the events exposed to collaborators."""

    AUTHORIZATION_REQUIRED = "authorization.required"
    AUTHORIZATION_APPROVED = "authorization.approved"
    AUTHORIZATION_REJECTED = "authorization.rejected"
    RESERVATION_CREATED = "reservation.created"
    RESERVATION_DELETED = "reservation.deleted"
    ALLOCATION_PROGRESS = "allocation.progress"


class DomainEvent(BaseModel):
    """A named event with a flat payload."""

    name: EventName
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def authorization_required(
        cls, track: str, proposal_id: str, face_ids: list[int]
    ) -> "DomainEvent":
        return cls(
            name=EventName.AUTHORIZATION_REQUIRED,
            payload={"track": track, "proposal_id": proposal_id, "face_ids": list(face_ids)},
        )

    @classmethod
    def authorization_approved(cls, track: str, proposal_id: str, count: int) -> "DomainEvent":
        return cls(
            name=EventName.AUTHORIZATION_APPROVED,
            payload={"track": track, "proposal_id": proposal_id, "count": count},
        )

    @classmethod
    def authorization_rejected(cls, track: str, proposal_id: str, reason: str) -> "DomainEvent":
        return cls(
            name=EventName.AUTHORIZATION_REJECTED,
            payload={"track": track, "proposal_id": proposal_id, "reason": reason},
        )

    @classmethod
    def reservation_created(cls, proposal_id: str, count: int) -> "DomainEvent":
        return cls(
            name=EventName.RESERVATION_CREATED,
            payload={"proposal_id": proposal_id, "count": count},
        )

    @classmethod
    def reservation_deleted(cls, proposal_id: str, count: int) -> "DomainEvent":
        return cls(
            name=EventName.RESERVATION_DELETED,
            payload={"proposal_id": proposal_id, "count": count},
        )

    @classmethod
    def allocation_progress(
        cls, proposal_id: str, processed: int, total: int, created: int
    ) -> "DomainEvent":
        return cls(
            name=EventName.ALLOCATION_PROGRESS,
            payload={
                "proposal_id": proposal_id,
                "processed": processed,
                "total": total,
                "created": created,
            },
        )

    def to_message(self) -> dict[str, Any]:
        """Serialize for transports that take JSON-compatible dicts."""
        return self.model_dump(mode="json")
