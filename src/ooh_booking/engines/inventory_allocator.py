"""Inventory Allocator - Books physical ad spaces for a billing period.

Allocation rules:
- A space with an active reservation in an overlapping period is unavailable
- Flow and counter-flow requests at the same coordinates form a complete
  group sharing one freshly minted group id
- Each request takes the first free space of its slot not already claimed
  in the same batch
- Space the proposal already holds for the period satisfies re-submitted
  requests, which are skipped as duplicates
- A storage conflict skips only the request that lost the race
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..errors import ConflictError, NotFoundError
from ..events.dispatcher import EventDispatcher, dispatch_events
from ..events.models import DomainEvent
from ..models.core import (
    AdSpace,
    CalendarPeriod,
    FaceRequest,
    InventorySlot,
    Orientation,
    RequestKind,
    Reservation,
    ReservationStatus,
)
from ..models.results import (
    AllocationResult,
    ApsAssignment,
    AvailableSlot,
    DeletionResult,
    ReservationSummary,
    SkippedRequest,
    SkipReason,
    SlotRequest,
    SlotStatus,
    ToggleResult,
)
from ..storage.base import StorageBackend

logger = logging.getLogger(__name__)

# Commercial status priority when classifying a slot for a period.
STATUS_PRIORITY = (
    ReservationStatus.SOLD,
    ReservationStatus.RESERVED,
    ReservationStatus.BONUS,
)


class _Batch:
    """Mutable bookkeeping for one allocation call."""

    def __init__(
        self,
        unavailable: set[int],
        held: Counter,
        total: int,
    ) -> None:
        self.unavailable = unavailable
        self.held = held
        self.claimed: set[int] = set()
        self.total = total
        self.processed = 0
        self.created: list[Reservation] = []
        self.skipped: list[SkippedRequest] = []
        self.events: list[DomainEvent] = []


class InventoryAllocator:
    """Allocates inventory spaces to face requests.

    Example:
        allocator = InventoryAllocator(storage, dispatcher=dispatcher)
        result = await allocator.allocate(
            face_id=12,
            requests=[SlotRequest(slot_id=3), SlotRequest(slot_id=4)],
            period_id=7,
        )
    """

    def __init__(
        self,
        storage: StorageBackend,
        dispatcher: Optional[EventDispatcher] = None,
        progress_every: int = 5,
    ) -> None:
        """Initialize the allocator.

        Args:
            storage: Connected storage backend
            dispatcher: Receives allocation.progress events as they happen
            progress_every: Emit progress after this many created reservations
        """
        self._storage = storage
        self._dispatcher = dispatcher
        self._progress_every = max(progress_every, 1)

    # -------------------------------------------------------------------------
    # Shared lookups
    # -------------------------------------------------------------------------

    async def _overlapping_period_ids(self, period: CalendarPeriod) -> list[int]:
        periods = await self._storage.find_overlapping_periods(period.start_date, period.end_date)
        return [p.period_id for p in periods]

    async def _proposal_face_ids(self, face: FaceRequest) -> set[int]:
        faces = await self._storage.list_faces(face.proposal_id)
        return {f.face_id for f in faces}

    async def _load_slots(self, slot_ids: Iterable[int]) -> dict[int, InventorySlot]:
        slots: dict[int, InventorySlot] = {}
        for slot_id in slot_ids:
            if slot_id not in slots:
                slots[slot_id] = await self._storage.require_slot(slot_id)
        return slots

    async def _emit_progress(self, batch: _Batch, proposal_id: str) -> None:
        event = DomainEvent.allocation_progress(
            proposal_id,
            processed=batch.processed,
            total=batch.total,
            created=len(batch.created),
        )
        batch.events.append(event)
        await dispatch_events(self._dispatcher, [event])

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def _pair_complete_groups(
        self,
        requests: Sequence[SlotRequest],
        slots: dict[int, InventorySlot],
    ) -> tuple[list[tuple[int, int]], list[int]]:
        """Split request indexes into flow/counter-flow pairs and individual requests.

        Several flows and counter-flows at one location are paired in request
        order; leftovers stay individual.
        """
        buckets: dict[tuple[float, float], dict[Orientation, list[int]]] = defaultdict(
            lambda: {Orientation.FLOW: [], Orientation.COUNTER_FLOW: []}
        )
        for index, request in enumerate(requests):
            slot = slots[request.slot_id]
            if slot.orientation in (Orientation.FLOW, Orientation.COUNTER_FLOW):
                buckets[slot.coordinates][slot.orientation].append(index)

        pairs: list[tuple[int, int]] = []
        for by_orientation in buckets.values():
            pairs.extend(zip(by_orientation[Orientation.FLOW], by_orientation[Orientation.COUNTER_FLOW]))

        paired = {index for pair in pairs for index in pair}
        individual = [index for index in range(len(requests)) if index not in paired]
        return pairs, individual

    def _resolve_space(self, spaces: list[AdSpace], batch: _Batch) -> Optional[AdSpace]:
        """First space of a slot that is neither booked nor claimed in this batch."""
        for space in spaces:
            if space.space_id not in batch.unavailable and space.space_id not in batch.claimed:
                return space
        return None

    def _take_duplicate(self, request: SlotRequest, batch: _Batch) -> bool:
        """Consume a space the proposal already holds on the slot, if any."""
        if batch.held[request.slot_id] > 0:
            batch.held[request.slot_id] -= 1
            return True
        return False

    def _skip(self, batch: _Batch, request: SlotRequest, reason: SkipReason, detail: str) -> None:
        batch.skipped.append(
            SkippedRequest(slot_id=request.slot_id, kind=request.kind, reason=reason, detail=detail)
        )
        logger.warning(f"Skipped slot {request.slot_id} ({reason.value}): {detail}")

    async def _create(
        self,
        batch: _Batch,
        request: SlotRequest,
        space: AdSpace,
        face: FaceRequest,
        period: CalendarPeriod,
        group_id: Optional[int],
    ) -> Optional[Reservation]:
        try:
            reservation = await self._storage.insert_reservation(
                Reservation(
                    space_id=space.space_id,
                    slot_id=space.slot_id,
                    face_id=face.face_id,
                    period_id=period.period_id,
                    status=ReservationStatus.for_kind(request.kind),
                    group_id=group_id,
                )
            )
        except ConflictError as e:
            batch.unavailable.add(space.space_id)
            self._skip(batch, request, SkipReason.CONFLICT, str(e))
            return None

        batch.created.append(reservation)
        return reservation

    async def _place(
        self,
        batch: _Batch,
        request: SlotRequest,
        space: AdSpace,
        face: FaceRequest,
        period: CalendarPeriod,
        group_id: Optional[int],
    ) -> None:
        """Create a reservation within a batch and report progress on cadence."""
        if await self._create(batch, request, space, face, period, group_id) is None:
            return
        if len(batch.created) % self._progress_every == 0:
            await self._emit_progress(batch, face.proposal_id)

    async def allocate(
        self,
        face_id: int,
        requests: Sequence[SlotRequest],
        period_id: int,
        grouping_enabled: bool = True,
    ) -> AllocationResult:
        """Reserve spaces for a face request within a calendar period.

        Raises:
            NotFoundError: If the face, period or any requested slot is unknown
        """
        face = await self._storage.require_face(face_id)
        period = await self._storage.require_period(period_id)
        slots = await self._load_slots(r.slot_id for r in requests)

        # Spaces booked by anyone in an overlapping period are unavailable;
        # what this proposal already holds satisfies re-submitted requests.
        period_ids = await self._overlapping_period_ids(period)
        booked = await self._storage.list_reservations(period_ids=period_ids)
        proposal_faces = await self._proposal_face_ids(face)
        batch = _Batch(
            unavailable={r.space_id for r in booked},
            held=Counter(r.slot_id for r in booked if r.face_id in proposal_faces),
            total=len(requests),
        )

        spaces_by_slot = {slot_id: await self._storage.list_spaces(slot_id) for slot_id in slots}

        if grouping_enabled:
            pairs, individual = self._pair_complete_groups(requests, slots)
        else:
            pairs, individual = [], list(range(len(requests)))

        groups_created: list[int] = []

        for flow_index, counter_index in pairs:
            members = []
            for index in (flow_index, counter_index):
                request = requests[index]
                if self._take_duplicate(request, batch):
                    self._skip(batch, request, SkipReason.DUPLICATE, "Already reserved for this proposal")
                    continue
                space = self._resolve_space(spaces_by_slot[request.slot_id], batch)
                if space is None:
                    self._skip(batch, request, SkipReason.UNAVAILABLE, "No free space for the period")
                    continue
                batch.claimed.add(space.space_id)
                members.append((request, space))

            # Only a fully placed pair becomes a complete group
            group_id = None
            if len(members) == 2:
                group_id = await self._storage.next_sequence("group_id")
                groups_created.append(group_id)

            batch.processed += 2 - len(members)
            for request, space in members:
                batch.processed += 1
                await self._place(batch, request, space, face, period, group_id)

        for index in individual:
            request = requests[index]
            batch.processed += 1
            if self._take_duplicate(request, batch):
                self._skip(batch, request, SkipReason.DUPLICATE, "Already reserved for this proposal")
            else:
                space = self._resolve_space(spaces_by_slot[request.slot_id], batch)
                if space is None:
                    self._skip(batch, request, SkipReason.UNAVAILABLE, "No free space for the period")
                else:
                    batch.claimed.add(space.space_id)
                    await self._place(batch, request, space, face, period, None)

        await self._emit_progress(batch, face.proposal_id)

        if batch.created:
            batch.events.append(DomainEvent.reservation_created(face.proposal_id, len(batch.created)))

        logger.info(
            f"Allocation for face {face_id} in period {period_id}: "
            f"{len(batch.created)} created, {len(batch.skipped)} skipped, {len(groups_created)} group(s)"
        )
        return AllocationResult(
            proposal_id=face.proposal_id,
            face_id=face_id,
            period_id=period_id,
            reservations_created=batch.created,
            skipped=batch.skipped,
            groups_created=groups_created,
            events=batch.events,
        )

    # -------------------------------------------------------------------------
    # Single-click add/remove and deletion
    # -------------------------------------------------------------------------

    async def toggle_reservation(
        self,
        slot_id: int,
        face_id: int,
        period_id: int,
        kind: RequestKind = RequestKind.PAID,
    ) -> ToggleResult:
        """Remove the proposal's reservation on a slot, or create one.

        Removing a reservation that belongs to a complete group removes the
        whole group.

        Raises:
            NotFoundError: If the face, period or slot is unknown
        """
        face = await self._storage.require_face(face_id)
        period = await self._storage.require_period(period_id)
        await self._storage.require_slot(slot_id)

        spaces = await self._storage.list_spaces(slot_id)
        period_ids = await self._overlapping_period_ids(period)
        held = await self._storage.list_reservations(
            proposal_id=face.proposal_id,
            space_ids=[s.space_id for s in spaces],
            period_ids=period_ids,
        )

        if held:
            group_ids = {r.group_id for r in held if r.group_id is not None}
            siblings = await self._storage.list_reservations(group_ids=group_ids) if group_ids else []
            ids = [r.reservation_id for r in held] + [r.reservation_id for r in siblings]
            deleted = await self._storage.soft_delete_reservations(ids, datetime.utcnow())
            logger.info(f"Toggle removed {len(deleted)} reservation(s) on slot {slot_id}")
            return ToggleResult(
                proposal_id=face.proposal_id,
                deleted_ids=deleted,
                events=[DomainEvent.reservation_deleted(face.proposal_id, len(deleted))],
            )

        request = SlotRequest(slot_id=slot_id, kind=kind)
        booked = await self._storage.list_reservations(
            space_ids=[s.space_id for s in spaces],
            period_ids=period_ids,
        )
        batch = _Batch(unavailable={r.space_id for r in booked}, held=Counter(), total=1)
        space = self._resolve_space(spaces, batch)
        if space is None:
            self._skip(batch, request, SkipReason.UNAVAILABLE, "No free space for the period")
        else:
            await self._create(batch, request, space, face, period, None)

        if not batch.created:
            return ToggleResult(proposal_id=face.proposal_id, skipped=batch.skipped[0])

        return ToggleResult(
            proposal_id=face.proposal_id,
            created=batch.created[0],
            events=[DomainEvent.reservation_created(face.proposal_id, 1)],
        )

    async def delete_reservations(self, reservation_ids: Sequence[int]) -> DeletionResult:
        """Soft-delete reservations by ID.

        Raises:
            NotFoundError: If any reservation ID is unknown
        """
        proposals: dict[int, str] = {}
        for reservation_id in reservation_ids:
            reservation = await self._storage.get_reservation(reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation", reservation_id)
            face = await self._storage.require_face(reservation.face_id)
            proposals[reservation_id] = face.proposal_id

        deleted = await self._storage.soft_delete_reservations(reservation_ids, datetime.utcnow())

        per_proposal = Counter(proposals[rid] for rid in deleted)
        events = [
            DomainEvent.reservation_deleted(proposal_id, count)
            for proposal_id, count in per_proposal.items()
        ]
        logger.info(f"Deleted {len(deleted)} of {len(reservation_ids)} reservation(s)")
        return DeletionResult(deleted_ids=deleted, events=events)

    # -------------------------------------------------------------------------
    # Availability, aggregation and APS numbering
    # -------------------------------------------------------------------------

    async def list_available(
        self,
        period_id: int,
        city: Optional[str] = None,
        format: Optional[str] = None,
        face_id: Optional[int] = None,
    ) -> list[AvailableSlot]:
        """List slots with at least one free space for a period.

        When a face is given, slots it already holds are flagged.
        """
        period = await self._storage.require_period(period_id)
        period_ids = await self._overlapping_period_ids(period)
        booked = {r.space_id for r in await self._storage.list_reservations(period_ids=period_ids)}

        held_slots: set[int] = set()
        if face_id is not None:
            await self._storage.require_face(face_id)
            held_slots = {r.slot_id for r in await self._storage.list_reservations(face_id=face_id)}

        available = []
        for slot in await self._storage.list_slots(city=city, format=format):
            spaces = await self._storage.list_spaces(slot.slot_id)
            free = [s for s in spaces if s.space_id not in booked]
            if not free:
                continue
            available.append(
                AvailableSlot(
                    slot=slot,
                    free_spaces=len(free),
                    total_spaces=len(spaces),
                    reserved_for_face=slot.slot_id in held_slots,
                )
            )
        return available

    async def inventory_status(self, period_id: int) -> list[SlotStatus]:
        """Classify every slot for a period: sold > reserved > bonus > available."""
        period = await self._storage.require_period(period_id)
        period_ids = await self._overlapping_period_ids(period)
        statuses: dict[int, set[ReservationStatus]] = defaultdict(set)
        for reservation in await self._storage.list_reservations(period_ids=period_ids):
            statuses[reservation.slot_id].add(reservation.status)

        result = []
        for slot in await self._storage.list_slots():
            label = "available"
            for status in STATUS_PRIORITY:
                if status in statuses.get(slot.slot_id, ()):
                    label = status.value
                    break
            result.append(SlotStatus(slot_id=slot.slot_id, code=slot.code, status=label))
        return result

    async def summarize_reservations(self, proposal_id: str) -> ReservationSummary:
        """Recompute reservation counts for a proposal from active rows.

        Raises:
            NotFoundError: If the proposal does not exist
        """
        await self._storage.require_proposal(proposal_id)
        reservations = await self._storage.list_reservations(proposal_id=proposal_id)
        by_status = Counter(r.status for r in reservations)
        groups = Counter(r.group_id for r in reservations if r.group_id is not None)
        return ReservationSummary(
            proposal_id=proposal_id,
            total=len(reservations),
            by_status=dict(by_status),
            complete_groups=sum(1 for count in groups.values() if count >= 2),
        )

    async def assign_aps(self, space_ids: Sequence[int]) -> ApsAssignment:
        """Stamp the next APS number on reservations of the given spaces.

        Every member of a complete group touched by the selection gets the
        same number. Reservations that already carry an APS keep it, and no
        number is taken when nothing active is left to stamp.
        """
        selected = await self._storage.list_reservations(space_ids=space_ids)
        if all(r.aps for r in selected):
            logger.info(f"No unstamped reservations on spaces {list(space_ids)}; APS not assigned")
            return ApsAssignment(aps=None, updated=0)
        group_ids = {r.group_id for r in selected if r.group_id is not None}
        aps = await self._storage.next_sequence("aps")
        updated = await self._storage.stamp_aps(space_ids, group_ids, aps)
        logger.info(f"APS {aps} assigned to {updated} reservation(s)")
        return ApsAssignment(aps=aps, updated=updated)
