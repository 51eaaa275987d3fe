"""Result models returned by engine operations.

Every engine operation returns a plain value plus the domain events it
produced; caller-owned objects are never mutated.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from ..events.models import DomainEvent
from .core import (
    FaceRequest,
    InventorySlot,
    Orientation,
    RequestKind,
    Reservation,
    ReservationStatus,
)


# =============================================================================
# Authorization
# =============================================================================


class PendingCheck(BaseModel):
    """Faces of a proposal still waiting on each track."""

    proposal_id: str
    has_pending: bool
    pending_dg: list[int] = Field(default_factory=list)
    pending_dcm: list[int] = Field(default_factory=list)


class AuthorizationSummary(BaseModel):
    """Aggregate authorization counts for a proposal."""

    proposal_id: str
    total: int = 0
    fully_approved: int = 0
    pending_dg: int = 0
    pending_dcm: int = 0
    rejected: int = 0

    @computed_field
    @property
    def can_proceed(self) -> bool:
        return self.pending_dg == 0 and self.pending_dcm == 0 and self.rejected == 0


class DecisionResult(BaseModel):
    """Outcome of approving or rejecting a track."""

    proposal_id: str
    track: str
    count: int
    resolved_tasks: int = 0
    events: list[DomainEvent] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    """Outcome of evaluating and storing face requests."""

    proposal_id: str
    faces: list[FaceRequest] = Field(default_factory=list)
    pending: Optional[PendingCheck] = None
    tasks_created: int = 0
    events: list[DomainEvent] = Field(default_factory=list)


# =============================================================================
# Allocation
# =============================================================================


class SlotRequest(BaseModel):
    """A request to book one space on a slot."""

    slot_id: int
    kind: RequestKind = RequestKind.PAID


class SkipReason(str, Enum):
    """Why a slot request did not produce a reservation."""

    UNAVAILABLE = "unavailable"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"


class SkippedRequest(BaseModel):
    """A slot request that could not be placed."""

    slot_id: int
    kind: RequestKind = RequestKind.PAID
    reason: SkipReason
    detail: str = ""


class AllocationResult(BaseModel):
    """Outcome of an allocation batch."""

    proposal_id: str
    face_id: int
    period_id: int
    reservations_created: list[Reservation] = Field(default_factory=list)
    skipped: list[SkippedRequest] = Field(default_factory=list)
    groups_created: list[int] = Field(default_factory=list)
    events: list[DomainEvent] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.reservations_created)


class ToggleResult(BaseModel):
    """Outcome of a single-click add/remove."""

    proposal_id: str
    created: Optional[Reservation] = None
    deleted_ids: list[int] = Field(default_factory=list)
    skipped: Optional[SkippedRequest] = None
    events: list[DomainEvent] = Field(default_factory=list)


class DeletionResult(BaseModel):
    """Outcome of soft-deleting reservations."""

    deleted_ids: list[int] = Field(default_factory=list)
    events: list[DomainEvent] = Field(default_factory=list)


class ApsAssignment(BaseModel):
    """Outcome of stamping an APS number on reservations."""

    aps: Optional[int] = None
    updated: int


# =============================================================================
# Aggregation
# =============================================================================


class ReservationSummary(BaseModel):
    """Counts recomputed from a proposal's active reservations."""

    proposal_id: str
    total: int = 0
    by_status: dict[ReservationStatus, int] = Field(default_factory=dict)
    complete_groups: int = 0


class AvailableSlot(BaseModel):
    """A slot with free spaces for a period."""

    slot: InventorySlot
    free_spaces: int
    total_spaces: int
    reserved_for_face: bool = False

    @property
    def orientation(self) -> Orientation:
        return self.slot.orientation


class SlotStatus(BaseModel):
    """Commercial status of a slot within a period."""

    slot_id: int
    code: str
    status: str  # sold, reserved, bonus, available
