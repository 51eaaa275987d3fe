"""Core data models for outdoor-advertising campaign requests.

These models represent the entities shared by the authorization-criteria
engine and the inventory allocation engine:
- Proposals and the face requests ("caras") they own
- Physical inventory: slots (sites) and the addressable spaces on them
- Calendar periods and the reservations that book spaces for a period
- Approval tasks filed for the two authorization tracks
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..errors import ValidationError


# =============================================================================
# Enums
# =============================================================================


class AuthorizationStatus(str, Enum):
    """State of one authorization track for a face request."""

    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"


class Track(str, Enum):
    """Independent approval tracks.

    DG is the general-direction sign-off for economically marginal placements;
    DCM is the commercial-direction sign-off for commercially sensitive bands.
    """

    DG = "dg"
    DCM = "dcm"

    @classmethod
    def parse(cls, value: "str | Track") -> "Track":
        """Parse a track name, case-insensitively."""
        if isinstance(value, Track):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown authorization track: {value!r}")


class MediumType(str, Enum):
    """Medium of a face: printed or screen."""

    TRADITIONAL = "traditional"
    DIGITAL = "digital"


class Orientation(str, Enum):
    """Direction a face looks relative to traffic."""

    FLOW = "flow"
    COUNTER_FLOW = "counter_flow"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Orientation":
        """Map free-form site labels (Flujo, Contraflujo, ...) onto an orientation."""
        if not value:
            return cls.OTHER
        label = value.strip().upper().replace("-", "").replace("_", "").replace(" ", "")
        if label in ("CONTRAFLUJO", "COUNTERFLOW"):
            return cls.COUNTER_FLOW
        if label in ("FLUJO", "FLOW"):
            return cls.FLOW
        return cls.OTHER


class RequestKind(str, Enum):
    """Commercial kind of a slot request."""

    PAID = "paid"
    BONUS = "bonus"


class ReservationStatus(str, Enum):
    """Commercial status of a reservation."""

    RESERVED = "reserved"
    BONUS = "bonus"
    SOLD = "sold"
    ELIMINATED = "eliminated"

    @classmethod
    def for_kind(cls, kind: RequestKind) -> "ReservationStatus":
        """Bonus requests are booked with a distinct status from paid ones."""
        return cls.BONUS if kind == RequestKind.BONUS else cls.RESERVED


class ProposalStatus(str, Enum):
    """Status of a proposal / campaign."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    ACTIVE = "active"
    CANCELLED = "cancelled"


# Statuses that commit inventory and therefore require full authorization.
GATED_STATUSES = frozenset({ProposalStatus.APPROVED, ProposalStatus.ACTIVE})


class TaskKind(str, Enum):
    """Kind of approval task."""

    AUTHORIZATION = "authorization"
    REJECTION_NOTICE = "rejection_notice"


class TaskStatus(str, Enum):
    """Status of an approval task."""

    PENDING = "pending"
    RESOLVED = "resolved"


# =============================================================================
# Proposals and face requests
# =============================================================================


class Proposal(BaseModel):
    """A campaign proposal owning a set of face requests.

    The aggregate authorization state is derived from the faces and never
    stored on the proposal.
    """

    proposal_id: str
    client_name: Optional[str] = None
    campaign_name: Optional[str] = None
    requester: Optional[str] = None
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FaceRequest(BaseModel):
    """A request for a number of faces of one format in one market."""

    face_id: Optional[int] = None
    proposal_id: str

    # Market
    city: Optional[str] = None
    state: Optional[str] = None

    # Commercial terms
    format: Optional[str] = None
    medium_type: Optional[str] = None
    requested_faces: Optional[int] = None
    bonus_faces: int = 0
    cost: Optional[float] = None
    public_tariff: float = 0.0

    # Billing period
    period_start: Optional[date] = None
    period_end: Optional[date] = None

    # Dual authorization state
    dg_status: AuthorizationStatus = AuthorizationStatus.PENDING
    dcm_status: AuthorizationStatus = AuthorizationStatus.PENDING
    reason_dg: Optional[str] = None
    reason_dcm: Optional[str] = None
    rejection_reason: Optional[str] = None

    # Values computed at evaluation time
    effective_tariff: Optional[float] = None
    total_faces: Optional[int] = None

    def status_for(self, track: Track) -> AuthorizationStatus:
        """Get the status of one track."""
        return self.dg_status if track == Track.DG else self.dcm_status

    @property
    def is_pending(self) -> bool:
        """A face is pending while either track is pending."""
        return AuthorizationStatus.PENDING in (self.dg_status, self.dcm_status)

    @property
    def is_fully_approved(self) -> bool:
        return (
            self.dg_status == AuthorizationStatus.APPROVED
            and self.dcm_status == AuthorizationStatus.APPROVED
        )

    @property
    def is_rejected(self) -> bool:
        return AuthorizationStatus.REJECTED in (self.dg_status, self.dcm_status)


# =============================================================================
# Inventory
# =============================================================================


class AdSpace(BaseModel):
    """One addressable unit on a slot (a printed face or a screen spot)."""

    space_id: Optional[int] = None
    slot_id: int
    label: str = ""


class InventorySlot(BaseModel):
    """A physical advertising face at a location."""

    slot_id: Optional[int] = None
    code: str
    latitude: float
    longitude: float
    city: Optional[str] = None
    state: Optional[str] = None
    format: str
    medium_type: MediumType = MediumType.TRADITIONAL
    orientation: Orientation = Orientation.OTHER
    public_tariff: float = 0.0

    @property
    def coordinates(self) -> tuple[float, float]:
        """Location key used to pair flow and counter-flow faces."""
        return (round(self.latitude, 6), round(self.longitude, 6))


class CalendarPeriod(BaseModel):
    """A billing period (catorcena) with an inclusive date range."""

    period_id: Optional[int] = None
    year: int
    number: int
    start_date: date
    end_date: date

    def overlaps(self, start: date, end: date) -> bool:
        """Check whether this period overlaps the inclusive range [start, end]."""
        return self.start_date <= end and self.end_date >= start

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


# =============================================================================
# Reservations
# =============================================================================


class ActiveState(BaseModel):
    """Reservation is live and blocks its space for the period."""

    kind: Literal["active"] = "active"


class DeletedState(BaseModel):
    """Reservation was soft-deleted at a point in time."""

    kind: Literal["deleted"] = "deleted"
    at: datetime


ReservationState = Annotated[Union[ActiveState, DeletedState], Field(discriminator="kind")]


class Reservation(BaseModel):
    """Links one space to one face request for one calendar period."""

    reservation_id: Optional[int] = None
    space_id: int
    slot_id: Optional[int] = None
    face_id: int
    period_id: int
    status: ReservationStatus = ReservationStatus.RESERVED
    group_id: Optional[int] = None
    aps: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    state: ReservationState = Field(default_factory=ActiveState)

    @property
    def is_active(self) -> bool:
        return isinstance(self.state, ActiveState)

    @property
    def deleted_at(self) -> Optional[datetime]:
        return self.state.at if isinstance(self.state, DeletedState) else None


# =============================================================================
# Approval tasks
# =============================================================================


class ApprovalTask(BaseModel):
    """Work item asking approvers (or the requester) to act on a proposal."""

    task_id: Optional[int] = None
    proposal_id: str
    kind: TaskKind = TaskKind.AUTHORIZATION
    track: Optional[Track] = None
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    assignees: list[str] = Field(default_factory=list)
    due_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
