"""Base storage backend interface."""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, Optional

from ..errors import NotFoundError
from ..models.core import (
    AdSpace,
    ApprovalTask,
    AuthorizationStatus,
    CalendarPeriod,
    FaceRequest,
    InventorySlot,
    Proposal,
    ProposalStatus,
    Reservation,
    TaskKind,
    TaskStatus,
    Track,
)
from ..models.criteria import CriteriaRule, CriteriaTable


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to storage backend."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to storage backend."""
        pass

    # -------------------------------------------------------------------------
    # Criteria rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_criteria_rule(self, rule: CriteriaRule) -> CriteriaRule:
        """Insert or update a criteria rule."""
        pass

    @abstractmethod
    async def list_criteria_rules(self, active_only: bool = True) -> list[CriteriaRule]:
        """List criteria rules."""
        pass

    # -------------------------------------------------------------------------
    # Proposals and faces
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_proposal(self, proposal: Proposal) -> Proposal:
        """Insert or replace a proposal."""
        pass

    @abstractmethod
    async def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        """Get a proposal by ID."""
        pass

    @abstractmethod
    async def update_proposal_status(self, proposal_id: str, status: ProposalStatus) -> None:
        """Set a proposal's status."""
        pass

    @abstractmethod
    async def save_face(self, face: FaceRequest) -> FaceRequest:
        """Insert a face (no id) or update it (with id). Returns the stored face."""
        pass

    @abstractmethod
    async def get_face(self, face_id: int) -> Optional[FaceRequest]:
        """Get a face request by ID."""
        pass

    @abstractmethod
    async def list_faces(self, proposal_id: str) -> list[FaceRequest]:
        """List all faces of a proposal."""
        pass

    @abstractmethod
    async def transition_track(
        self,
        proposal_id: str,
        track: Track,
        from_status: AuthorizationStatus,
        to_status: AuthorizationStatus,
        reason: Optional[str] = None,
    ) -> list[int]:
        """Move every face of a proposal on one track between statuses.

        Returns:
            IDs of the faces that changed
        """
        pass

    # -------------------------------------------------------------------------
    # Inventory
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_slot(self, slot: InventorySlot, spaces: int = 1) -> InventorySlot:
        """Insert a slot with a number of addressable spaces."""
        pass

    @abstractmethod
    async def get_slot(self, slot_id: int) -> Optional[InventorySlot]:
        """Get a slot by ID."""
        pass

    @abstractmethod
    async def list_slots(
        self,
        city: Optional[str] = None,
        format: Optional[str] = None,
    ) -> list[InventorySlot]:
        """List slots, optionally filtered by city and format."""
        pass

    @abstractmethod
    async def list_spaces(self, slot_id: int) -> list[AdSpace]:
        """List the spaces of a slot, in stable order."""
        pass

    @abstractmethod
    async def save_period(self, period: CalendarPeriod) -> CalendarPeriod:
        """Insert a calendar period."""
        pass

    @abstractmethod
    async def get_period(self, period_id: int) -> Optional[CalendarPeriod]:
        """Get a calendar period by ID."""
        pass

    @abstractmethod
    async def find_overlapping_periods(self, start: date, end: date) -> list[CalendarPeriod]:
        """Find periods overlapping the inclusive range [start, end]."""
        pass

    @abstractmethod
    async def find_period_for_date(self, day: date) -> Optional[CalendarPeriod]:
        """Find the period containing a date."""
        pass

    # -------------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        """Atomically insert a reservation.

        Raises:
            ConflictError: If the space already has an active reservation in an
                overlapping period
        """
        pass

    @abstractmethod
    async def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        """Get a reservation by ID (active or deleted)."""
        pass

    @abstractmethod
    async def list_reservations(
        self,
        proposal_id: Optional[str] = None,
        face_id: Optional[int] = None,
        space_ids: Optional[Iterable[int]] = None,
        group_ids: Optional[Iterable[int]] = None,
        period_ids: Optional[Iterable[int]] = None,
        active_only: bool = True,
    ) -> list[Reservation]:
        """List reservations matching all given filters."""
        pass

    @abstractmethod
    async def soft_delete_reservations(self, reservation_ids: Iterable[int], at: datetime) -> list[int]:
        """Tombstone active reservations.

        Returns:
            IDs that were active and are now deleted
        """
        pass

    @abstractmethod
    async def stamp_aps(self, space_ids: Iterable[int], group_ids: Iterable[int], aps: int) -> int:
        """Set an APS number on active reservations lacking one.

        Returns:
            Number of reservations updated
        """
        pass

    @abstractmethod
    async def next_sequence(self, name: str) -> int:
        """Atomically advance a named sequence and return its new value."""
        pass

    # -------------------------------------------------------------------------
    # Approval tasks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_task(self, task: ApprovalTask) -> ApprovalTask:
        """Insert an approval task."""
        pass

    @abstractmethod
    async def resolve_tasks(
        self,
        proposal_id: str,
        track: Optional[Track] = None,
        kind: TaskKind = TaskKind.AUTHORIZATION,
    ) -> int:
        """Mark pending tasks resolved; all tracks when track is None.

        Returns:
            Number of tasks resolved
        """
        pass

    @abstractmethod
    async def list_tasks(
        self,
        proposal_id: str,
        status: Optional[TaskStatus] = None,
    ) -> list[ApprovalTask]:
        """List tasks of a proposal."""
        pass

    # Higher-level operations for common use cases

    async def require_proposal(self, proposal_id: str) -> Proposal:
        """Get a proposal or raise NotFoundError."""
        proposal = await self.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal", proposal_id)
        return proposal

    async def require_face(self, face_id: int) -> FaceRequest:
        """Get a face request or raise NotFoundError."""
        face = await self.get_face(face_id)
        if face is None:
            raise NotFoundError("Face", face_id)
        return face

    async def require_slot(self, slot_id: int) -> InventorySlot:
        """Get a slot or raise NotFoundError."""
        slot = await self.get_slot(slot_id)
        if slot is None:
            raise NotFoundError("Slot", slot_id)
        return slot

    async def require_period(self, period_id: int) -> CalendarPeriod:
        """Get a calendar period or raise NotFoundError."""
        period = await self.get_period(period_id)
        if period is None:
            raise NotFoundError("Period", period_id)
        return period

    async def load_criteria_table(self) -> CriteriaTable:
        """Load active criteria rules into a lookup table."""
        return CriteriaTable.from_rules(await self.list_criteria_rules(active_only=True))
