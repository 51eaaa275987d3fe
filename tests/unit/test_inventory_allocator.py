"""Unit tests for the inventory allocator."""

import pytest

from ooh_booking.engines.inventory_allocator import InventoryAllocator
from ooh_booking.errors import ConflictError, NotFoundError
from ooh_booking.events import CollectingDispatcher, EventDispatcher, EventName
from ooh_booking.models.core import (
    AuthorizationStatus,
    FaceRequest,
    Proposal,
    RequestKind,
    ReservationStatus,
)
from ooh_booking.models.results import SkipReason, SlotRequest


class FailingDispatcher(EventDispatcher):
    """Dispatcher whose transport is down."""

    async def publish(self, event):
        raise ConnectionError("dispatcher unavailable")


async def _other_face(storage) -> FaceRequest:
    """An approved face on a second proposal."""
    await storage.save_proposal(Proposal(proposal_id="2001", client_name="Otra Marca"))
    return await storage.save_face(
        FaceRequest(
            proposal_id="2001",
            format="PARABUS",
            requested_faces=2,
            cost=8000,
            dg_status=AuthorizationStatus.APPROVED,
            dcm_status=AuthorizationStatus.APPROVED,
        )
    )


class TestInventoryAllocator:
    """Tests for InventoryAllocator."""

    @pytest.fixture
    def allocator(self, storage, dispatcher) -> InventoryAllocator:
        """Create an allocator that reports progress every two reservations."""
        return InventoryAllocator(storage, dispatcher=dispatcher, progress_every=2)

    @pytest.mark.asyncio
    async def test_complete_group_shares_group_id(self, allocator, inventory):
        """Test that a flow/counter-flow pair gets one fresh group id."""
        result = await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
            ],
            inventory["first"].period_id,
        )

        group_ids = {r.group_id for r in result.reservations_created}
        assert result.created_count == 2
        assert result.skipped == []
        assert len(group_ids) == 1
        assert None not in group_ids
        assert result.groups_created == list(group_ids)
        assert all(r.status == ReservationStatus.RESERVED for r in result.reservations_created)

    @pytest.mark.asyncio
    async def test_group_ids_are_never_reused(self, allocator, inventory):
        """Test that consecutive groups get increasing ids."""
        pair = [
            SlotRequest(slot_id=inventory["flow"].slot_id),
            SlotRequest(slot_id=inventory["counter_flow"].slot_id),
        ]
        first = await allocator.allocate(inventory["face"].face_id, pair, inventory["first"].period_id)
        second = await allocator.allocate(inventory["face"].face_id, pair, inventory["second"].period_id)

        assert second.groups_created[0] > first.groups_created[0]

    @pytest.mark.asyncio
    async def test_grouping_disabled(self, allocator, inventory):
        """Test that disabling grouping books the pair individually."""
        result = await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
            ],
            inventory["first"].period_id,
            grouping_enabled=False,
        )

        assert result.created_count == 2
        assert result.groups_created == []
        assert all(r.group_id is None for r in result.reservations_created)

    @pytest.mark.asyncio
    async def test_leftover_flow_is_individual(self, allocator, storage, inventory):
        """Test that an unmatched flow at the same location books its next space ungrouped."""
        flow_spaces = await storage.list_spaces(inventory["flow"].slot_id)
        result = await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
                SlotRequest(slot_id=inventory["other_flow"].slot_id),
            ],
            inventory["first"].period_id,
        )

        grouped = [r for r in result.reservations_created if r.group_id is not None]
        ungrouped = [r for r in result.reservations_created if r.group_id is None]
        assert result.created_count == 4
        assert len(grouped) == 2
        assert len(ungrouped) == 2
        assert {r.space_id for r in result.reservations_created if r.slot_id == inventory["flow"].slot_id} == {
            s.space_id for s in flow_spaces
        }

    @pytest.mark.asyncio
    async def test_overlapping_period_is_unavailable(self, allocator, storage, inventory):
        """Test that a space booked in an overlapping period is skipped."""
        other = await _other_face(storage)
        single = SlotRequest(slot_id=inventory["single"].slot_id)

        await allocator.allocate(inventory["face"].face_id, [single], inventory["first"].period_id)
        overlapping = await allocator.allocate(other.face_id, [single], inventory["straddling"].period_id)
        disjoint = await allocator.allocate(other.face_id, [single], inventory["second"].period_id)

        assert overlapping.created_count == 0
        assert overlapping.skipped[0].reason == SkipReason.UNAVAILABLE
        assert disjoint.created_count == 1

    @pytest.mark.asyncio
    async def test_resubmission_is_duplicate(self, allocator, inventory):
        """Test that re-submitting the same request is idempotent."""
        request = [SlotRequest(slot_id=inventory["single"].slot_id)]
        await allocator.allocate(inventory["face"].face_id, request, inventory["first"].period_id)
        again = await allocator.allocate(inventory["face"].face_id, request, inventory["first"].period_id)

        assert again.created_count == 0
        assert again.skipped[0].reason == SkipReason.DUPLICATE

    @pytest.mark.asyncio
    async def test_holdings_consumed_before_new_spaces(self, allocator, inventory):
        """Test that only requests beyond current holdings create reservations."""
        flow = SlotRequest(slot_id=inventory["flow"].slot_id)
        await allocator.allocate(inventory["face"].face_id, [flow], inventory["first"].period_id)
        result = await allocator.allocate(inventory["face"].face_id, [flow, flow], inventory["first"].period_id)

        assert result.created_count == 1
        assert [s.reason for s in result.skipped] == [SkipReason.DUPLICATE]

    @pytest.mark.asyncio
    async def test_bonus_status(self, allocator, inventory):
        """Test that bonus requests get the bonus status."""
        result = await allocator.allocate(
            inventory["face"].face_id,
            [SlotRequest(slot_id=inventory["single"].slot_id, kind=RequestKind.BONUS)],
            inventory["first"].period_id,
        )
        assert result.reservations_created[0].status == ReservationStatus.BONUS

    @pytest.mark.asyncio
    async def test_progress_events(self, allocator, dispatcher, inventory):
        """Test progress every two reservations and on completion."""
        result = await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
            ],
            inventory["first"].period_id,
            grouping_enabled=False,
        )

        assert dispatcher.names() == ["allocation.progress"] * 3
        assert dispatcher.events[0].payload["processed"] == 2
        assert dispatcher.events[0].payload["created"] == 2
        final = dispatcher.events[-1].payload
        assert final["processed"] == 4
        assert final["total"] == 4
        assert final["created"] == 4
        assert result.events[-1].name == EventName.RESERVATION_CREATED
        assert result.events[-1].payload["count"] == 4

    @pytest.mark.asyncio
    async def test_pair_progress_counts_processed_members(self, allocator, dispatcher, inventory):
        """Test that progress inside a group never reports fewer processed than created."""
        await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
            ],
            inventory["first"].period_id,
        )

        payloads = [e.payload for e in dispatcher.events]
        assert payloads[0] == {"proposal_id": "1042", "processed": 2, "total": 2, "created": 2}
        assert all(p["processed"] >= p["created"] for p in payloads)

    @pytest.mark.asyncio
    async def test_dispatcher_failure_does_not_abort(self, storage, inventory):
        """Test that allocation completes when events cannot be delivered."""
        allocator = InventoryAllocator(storage, dispatcher=FailingDispatcher(), progress_every=1)
        result = await allocator.allocate(
            inventory["face"].face_id,
            [SlotRequest(slot_id=inventory["single"].slot_id)],
            inventory["first"].period_id,
        )
        assert result.created_count == 1

    @pytest.mark.asyncio
    async def test_storage_conflict_skips_item(self, allocator, storage, inventory, monkeypatch):
        """Test that a lost race skips one request and the batch continues."""
        original = storage.insert_reservation
        calls = []

        async def racing_insert(reservation):
            calls.append(reservation.space_id)
            if len(calls) == 1:
                raise ConflictError("Space taken concurrently", space_id=reservation.space_id)
            return await original(reservation)

        monkeypatch.setattr(storage, "insert_reservation", racing_insert)
        result = await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["single"].slot_id),
                SlotRequest(slot_id=inventory["other_flow"].slot_id),
            ],
            inventory["first"].period_id,
            grouping_enabled=False,
        )

        assert result.created_count == 1
        assert result.skipped[0].reason == SkipReason.CONFLICT
        assert result.skipped[0].slot_id == inventory["single"].slot_id

    @pytest.mark.asyncio
    async def test_unknown_slot_aborts(self, allocator, storage, inventory):
        """Test that an unknown slot aborts before anything is booked."""
        with pytest.raises(NotFoundError):
            await allocator.allocate(
                inventory["face"].face_id,
                [SlotRequest(slot_id=inventory["single"].slot_id), SlotRequest(slot_id=999)],
                inventory["first"].period_id,
            )
        assert await storage.list_reservations(proposal_id="1042") == []

    @pytest.mark.asyncio
    async def test_toggle_twice_is_net_zero(self, allocator, storage, inventory):
        """Test that a second toggle reverses the first."""
        args = (inventory["single"].slot_id, inventory["face"].face_id, inventory["first"].period_id)

        created = await allocator.toggle_reservation(*args)
        removed = await allocator.toggle_reservation(*args)

        assert created.created is not None
        assert created.events[0].name == EventName.RESERVATION_CREATED
        assert removed.deleted_ids == [created.created.reservation_id]
        assert removed.events[0].name == EventName.RESERVATION_DELETED
        assert await storage.list_reservations(face_id=inventory["face"].face_id) == []

    @pytest.mark.asyncio
    async def test_toggle_removes_complete_group(self, allocator, storage, inventory):
        """Test that toggling one member of a pair removes both."""
        result = await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
            ],
            inventory["first"].period_id,
        )

        toggled = await allocator.toggle_reservation(
            inventory["flow"].slot_id, inventory["face"].face_id, inventory["first"].period_id
        )

        assert sorted(toggled.deleted_ids) == sorted(r.reservation_id for r in result.reservations_created)
        assert await storage.list_reservations(proposal_id="1042") == []

    @pytest.mark.asyncio
    async def test_toggle_unavailable_slot(self, allocator, storage, inventory):
        """Test that toggling a slot booked by another proposal reports a skip."""
        other = await _other_face(storage)
        await allocator.toggle_reservation(inventory["single"].slot_id, other.face_id, inventory["first"].period_id)

        result = await allocator.toggle_reservation(
            inventory["single"].slot_id, inventory["face"].face_id, inventory["first"].period_id
        )

        assert result.created is None
        assert result.skipped.reason == SkipReason.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, allocator, storage, inventory):
        """Test that deletion tombstones reservations."""
        result = await allocator.allocate(
            inventory["face"].face_id,
            [SlotRequest(slot_id=inventory["single"].slot_id)],
            inventory["first"].period_id,
        )
        reservation_id = result.reservations_created[0].reservation_id

        deleted = await allocator.delete_reservations([reservation_id])
        stored = await storage.get_reservation(reservation_id)

        assert deleted.deleted_ids == [reservation_id]
        assert deleted.events[0].payload == {"proposal_id": "1042", "count": 1}
        assert stored is not None
        assert stored.is_active is False
        assert stored.deleted_at is not None

    @pytest.mark.asyncio
    async def test_delete_unknown_reservation(self, allocator, inventory):
        """Test that unknown IDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await allocator.delete_reservations([12345])

    @pytest.mark.asyncio
    async def test_list_available(self, allocator, storage, inventory):
        """Test free-space counts and the held-by-face flag."""
        await allocator.allocate(
            inventory["face"].face_id,
            [SlotRequest(slot_id=inventory["single"].slot_id), SlotRequest(slot_id=inventory["flow"].slot_id)],
            inventory["first"].period_id,
            grouping_enabled=False,
        )

        available = await allocator.list_available(
            inventory["straddling"].period_id, face_id=inventory["face"].face_id
        )
        by_slot = {a.slot.slot_id: a for a in available}

        assert inventory["single"].slot_id not in by_slot
        assert by_slot[inventory["flow"].slot_id].free_spaces == 1
        assert by_slot[inventory["flow"].slot_id].reserved_for_face is True
        assert by_slot[inventory["counter_flow"].slot_id].free_spaces == 2
        assert by_slot[inventory["counter_flow"].slot_id].reserved_for_face is False

    @pytest.mark.asyncio
    async def test_inventory_status_priority(self, allocator, storage, inventory):
        """Test that reserved outranks bonus and free slots are available."""
        await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id, kind=RequestKind.BONUS),
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["single"].slot_id, kind=RequestKind.BONUS),
            ],
            inventory["first"].period_id,
            grouping_enabled=False,
        )

        statuses = {s.slot_id: s.status for s in await allocator.inventory_status(inventory["first"].period_id)}

        assert statuses[inventory["flow"].slot_id] == "reserved"
        assert statuses[inventory["single"].slot_id] == "bonus"
        assert statuses[inventory["counter_flow"].slot_id] == "available"

    @pytest.mark.asyncio
    async def test_summarize_reservations(self, allocator, inventory):
        """Test counts recomputed from active reservations."""
        await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
                SlotRequest(slot_id=inventory["single"].slot_id, kind=RequestKind.BONUS),
            ],
            inventory["first"].period_id,
        )

        summary = await allocator.summarize_reservations("1042")

        assert summary.total == 3
        assert summary.by_status == {ReservationStatus.RESERVED: 2, ReservationStatus.BONUS: 1}
        assert summary.complete_groups == 1

    @pytest.mark.asyncio
    async def test_assign_aps_propagates_to_group(self, allocator, storage, inventory):
        """Test that APS numbers reach every member of a touched group."""
        await allocator.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
                SlotRequest(slot_id=inventory["single"].slot_id),
            ],
            inventory["first"].period_id,
        )
        flow_space = (await storage.list_spaces(inventory["flow"].slot_id))[0]
        single_space = (await storage.list_spaces(inventory["single"].slot_id))[0]

        first = await allocator.assign_aps([flow_space.space_id])
        second = await allocator.assign_aps([single_space.space_id])
        reservations = await storage.list_reservations(proposal_id="1042")

        assert first.updated == 2
        assert second.updated == 1
        assert second.aps == first.aps + 1
        assert sorted(r.aps for r in reservations) == [first.aps, first.aps, second.aps]

    @pytest.mark.asyncio
    async def test_assign_aps_without_targets_keeps_sequence(self, allocator, storage, inventory):
        """Test that APS numbers are not consumed when nothing is stamped."""
        single_space = (await storage.list_spaces(inventory["single"].slot_id))[0]

        empty = await allocator.assign_aps([single_space.space_id])
        await allocator.toggle_reservation(
            inventory["single"].slot_id, inventory["face"].face_id, inventory["first"].period_id
        )
        stamped = await allocator.assign_aps([single_space.space_id])
        again = await allocator.assign_aps([single_space.space_id])

        assert empty.aps is None
        assert empty.updated == 0
        assert stamped.aps == 1
        assert stamped.updated == 1
        assert again.aps is None
        assert await storage.next_sequence("aps") == 2
