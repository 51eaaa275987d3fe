"""Unit tests for the campaign workflow."""

from datetime import date

import pytest

from ooh_booking.errors import NotFoundError, StateError, ValidationError
from ooh_booking.flows import CampaignWorkflow
from ooh_booking.models.core import (
    AuthorizationStatus,
    FaceRequest,
    ProposalStatus,
    TaskKind,
    TaskStatus,
    Track,
)
from ooh_booking.models.results import SlotRequest


class TestCampaignWorkflow:
    """Tests for CampaignWorkflow."""

    @pytest.fixture
    def workflow(self, storage_with_rules, dispatcher, settings) -> CampaignWorkflow:
        """Create a workflow over stored criteria."""
        return CampaignWorkflow(storage_with_rules, dispatcher=dispatcher, settings=settings)

    @pytest.mark.asyncio
    async def test_submit_faces_files_tasks(self, workflow, storage, dispatcher, sample_proposal, sample_face):
        """Test that pending faces produce tasks and required events."""
        result = await workflow.submit_faces(sample_proposal, [sample_face])

        assert result.faces[0].face_id is not None
        assert result.faces[0].effective_tariff == 2500
        assert result.pending.has_pending is True
        assert result.tasks_created == 2
        assert dispatcher.names() == ["authorization.required", "authorization.required"]

        tasks = await storage.list_tasks("1042", TaskStatus.PENDING)
        assert tasks[0].assignees == ["direccion.general@example.com"]
        assert tasks[1].assignees == ["direccion.comercial@example.com"]

    @pytest.mark.asyncio
    async def test_submit_approved_faces(self, workflow, dispatcher, sample_proposal, sample_face):
        """Test that faces clearing every threshold file no tasks."""
        face = sample_face.model_copy(update={"requested_faces": 10})
        result = await workflow.submit_faces(sample_proposal, [face])

        assert result.pending.has_pending is False
        assert result.tasks_created == 0
        assert dispatcher.events == []

    @pytest.mark.asyncio
    async def test_invalid_face_aborts_submission(self, workflow, storage, sample_proposal, sample_face):
        """Test that one invalid face stores nothing."""
        broken = sample_face.model_copy(update={"cost": None})

        with pytest.raises(ValidationError):
            await workflow.submit_faces(sample_proposal, [sample_face, broken])
        assert await storage.get_proposal("1042") is None

    @pytest.mark.asyncio
    async def test_edit_face_re_evaluates(self, workflow, storage, sample_proposal, sample_face):
        """Test that editing terms discards prior decisions."""
        submitted = await workflow.submit_faces(sample_proposal, [sample_face])
        face_id = submitted.faces[0].face_id
        await workflow.reject("1042", Track.DG, "Tarifa baja")

        result = await workflow.edit_face(face_id, requested_faces=10)
        face = await storage.get_face(face_id)

        assert result.pending.has_pending is False
        assert face.dg_status == AuthorizationStatus.APPROVED
        assert face.dcm_status == AuthorizationStatus.APPROVED
        assert face.rejection_reason is None
        assert face.effective_tariff == 1000

    @pytest.mark.asyncio
    async def test_edit_face_validates(self, workflow, sample_proposal, sample_face):
        """Test that an edit removing required terms is rejected."""
        submitted = await workflow.submit_faces(sample_proposal, [sample_face])
        with pytest.raises(ValidationError):
            await workflow.edit_face(submitted.faces[0].face_id, format=None)

    @pytest.mark.asyncio
    async def test_gated_status_requires_authorization(self, workflow, sample_proposal, sample_face):
        """Test that approval status is refused while faces are pending."""
        await workflow.submit_faces(sample_proposal, [sample_face])

        with pytest.raises(StateError) as exc_info:
            await workflow.change_status("1042", ProposalStatus.APPROVED)
        assert exc_info.value.pending_dg == 1
        assert exc_info.value.pending_dcm == 1

        review = await workflow.change_status("1042", "in_review")
        assert review.status == ProposalStatus.IN_REVIEW

    @pytest.mark.asyncio
    async def test_approve_both_tracks_then_activate(self, workflow, storage, dispatcher, sample_proposal, sample_face):
        """Test the full approval path to an active proposal."""
        await workflow.submit_faces(sample_proposal, [sample_face])
        await workflow.approve("1042", "dg")
        await workflow.approve("1042", "dcm")

        proposal = await workflow.change_status("1042", ProposalStatus.ACTIVE)

        assert proposal.status == ProposalStatus.ACTIVE
        assert await storage.list_tasks("1042", TaskStatus.PENDING) == []
        assert dispatcher.names()[-2:] == ["authorization.approved", "authorization.approved"]

    @pytest.mark.asyncio
    async def test_reject_notifies_requester(self, workflow, storage, dispatcher, sample_proposal, sample_face):
        """Test that rejection files a notice and keeps the proposal status."""
        await workflow.submit_faces(sample_proposal, [sample_face])
        await workflow.reject("1042", Track.DCM, "Fuera de banda comercial")

        open_tasks = await storage.list_tasks("1042", TaskStatus.PENDING)
        notices = [t for t in open_tasks if t.kind == TaskKind.REJECTION_NOTICE]
        proposal = await storage.get_proposal("1042")

        assert len(notices) == 1
        assert notices[0].assignees == ["ventas@example.com"]
        assert "Fuera de banda comercial" in notices[0].description
        assert proposal.status == ProposalStatus.PENDING
        assert dispatcher.names()[-1] == "authorization.rejected"

    @pytest.mark.asyncio
    async def test_allocate_requires_clearance(self, workflow, sample_proposal, sample_face, inventory):
        """Test that a proposal with pending faces cannot book inventory."""
        submitted = await workflow.submit_faces(sample_proposal, [sample_face])

        with pytest.raises(StateError):
            await workflow.allocate(
                submitted.faces[0].face_id,
                [SlotRequest(slot_id=inventory["single"].slot_id)],
                inventory["first"].period_id,
            )

    @pytest.mark.asyncio
    async def test_allocate_publishes_completion_once(self, workflow, dispatcher, inventory):
        """Test that progress is dispatched live and completion after the batch."""
        result = await workflow.allocate(
            inventory["face"].face_id,
            [
                SlotRequest(slot_id=inventory["flow"].slot_id),
                SlotRequest(slot_id=inventory["counter_flow"].slot_id),
            ],
            inventory["first"].period_id,
        )

        assert result.created_count == 2
        assert dispatcher.names() == ["allocation.progress", "allocation.progress", "reservation.created"]

    @pytest.mark.asyncio
    async def test_allocate_uses_period_of_face_start(self, workflow, storage, inventory):
        """Test that the face's start date picks the billing period."""
        face = await storage.save_face(inventory["face"].model_copy(update={"period_start": date(2026, 1, 25)}))

        result = await workflow.allocate(face.face_id, [SlotRequest(slot_id=inventory["single"].slot_id)])

        assert result.period_id == inventory["second"].period_id

    @pytest.mark.asyncio
    async def test_allocate_without_period(self, workflow, storage, inventory):
        """Test that a date outside every period raises NotFoundError."""
        face = await storage.save_face(inventory["face"].model_copy(update={"period_start": date(2030, 1, 1)}))

        with pytest.raises(NotFoundError):
            await workflow.allocate(face.face_id, [SlotRequest(slot_id=inventory["single"].slot_id)])

    @pytest.mark.asyncio
    async def test_toggle_and_delete(self, workflow, storage, dispatcher, inventory):
        """Test toggle and delete passthroughs publish their events."""
        toggled = await workflow.toggle(
            inventory["single"].slot_id, inventory["face"].face_id, inventory["first"].period_id
        )
        deleted = await workflow.delete_reservations([toggled.created.reservation_id])

        assert deleted.deleted_ids == [toggled.created.reservation_id]
        assert dispatcher.names() == ["reservation.created", "reservation.deleted"]
        assert await storage.list_reservations(proposal_id="1042") == []

    @pytest.mark.asyncio
    async def test_evaluator_loaded_from_storage(self, workflow):
        """Test that the criteria table comes from stored rules."""
        evaluator = await workflow.get_evaluator()
        verdict = evaluator.evaluate(
            FaceRequest(proposal_id="x", city="Guadalajara", format="Columna", requested_faces=30, cost=90000)
        )

        assert len(evaluator.table.rules) == 3
        assert verdict.dcm_status == AuthorizationStatus.PENDING
