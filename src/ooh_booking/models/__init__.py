"""Domain models for the OOH booking engines."""

from .core import (
    AdSpace,
    ApprovalTask,
    AuthorizationStatus,
    CalendarPeriod,
    FaceRequest,
    InventorySlot,
    MediumType,
    Orientation,
    Proposal,
    ProposalStatus,
    RequestKind,
    Reservation,
    ReservationStatus,
    Track,
)
from .criteria import (
    AuthorizationVerdict,
    CriteriaRule,
    CriteriaTable,
    FaceTerms,
    ThresholdRange,
)

__all__ = [
    "AdSpace",
    "ApprovalTask",
    "AuthorizationStatus",
    "AuthorizationVerdict",
    "CalendarPeriod",
    "CriteriaRule",
    "CriteriaTable",
    "FaceRequest",
    "FaceTerms",
    "InventorySlot",
    "MediumType",
    "Orientation",
    "Proposal",
    "ProposalStatus",
    "RequestKind",
    "Reservation",
    "ReservationStatus",
    "ThresholdRange",
    "Track",
]
