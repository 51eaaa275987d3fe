"""Campaign Workflow - Orchestrates authorization and allocation for a proposal.

This flow handles:
- Submitting face requests (evaluate, store, file approval tasks)
- Editing face terms, which re-evaluates both tracks from scratch
- Approving or rejecting a track and notifying the requester
- Gating proposal status changes on full authorization
- Allocating, toggling and deleting reservations once the proposal can proceed
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from ..config import Settings, get_settings
from ..engines.authorization_tracker import AuthorizationTracker
from ..engines.criteria_evaluator import CriteriaEvaluator
from ..engines.inventory_allocator import InventoryAllocator
from ..errors import NotFoundError, StateError
from ..events.dispatcher import EventDispatcher, dispatch_events
from ..events.models import DomainEvent, EventName
from ..models.core import (
    GATED_STATUSES,
    ApprovalTask,
    CalendarPeriod,
    FaceRequest,
    Proposal,
    ProposalStatus,
    RequestKind,
    TaskKind,
    Track,
)
from ..models.results import (
    AllocationResult,
    DecisionResult,
    DeletionResult,
    SlotRequest,
    SubmissionResult,
    ToggleResult,
)
from ..storage.base import StorageBackend

logger = logging.getLogger(__name__)


class CampaignWorkflow:
    """Drives a proposal from face submission to booked inventory.

    Steps:
    1. Submit faces: each is evaluated and stored with its verdict
    2. File one approval task per track that has pending faces
    3. Approve or reject tracks until nothing is pending
    4. Move the proposal to a gated status and allocate inventory

    Example:
        workflow = CampaignWorkflow(storage, dispatcher=get_dispatcher())
        result = await workflow.submit_faces(proposal, faces)
        await workflow.approve(proposal.proposal_id, "dg")
        await workflow.change_status(proposal.proposal_id, ProposalStatus.APPROVED)
    """

    def __init__(
        self,
        storage: StorageBackend,
        dispatcher: Optional[EventDispatcher] = None,
        evaluator: Optional[CriteriaEvaluator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialize the workflow.

        Args:
            storage: Connected storage backend
            dispatcher: Receives every event the workflow produces
            evaluator: Criteria evaluator; loaded from stored rules when omitted
            settings: Application settings; defaults to the cached settings
        """
        self._storage = storage
        self._dispatcher = dispatcher
        self._evaluator = evaluator
        self._settings = settings or get_settings()
        self.tracker = AuthorizationTracker(storage)
        self.allocator = InventoryAllocator(
            storage,
            dispatcher=dispatcher,
            progress_every=self._settings.progress_every,
        )

    async def get_evaluator(self) -> CriteriaEvaluator:
        """Get the evaluator, loading the criteria table on first use."""
        if self._evaluator is None:
            table = await self._storage.load_criteria_table()
            self._evaluator = CriteriaEvaluator(
                table,
                criteria_formats=self._settings.criteria_formats,
                principal_markets=self._settings.principal_markets,
            )
            logger.debug(f"Loaded {len(table.rules)} criteria rule(s)")
        return self._evaluator

    async def _publish(self, events: Sequence[DomainEvent]) -> None:
        await dispatch_events(self._dispatcher, events)

    async def _refresh_tasks(self, proposal: Proposal) -> tuple[list[ApprovalTask], list[DomainEvent]]:
        """Replace open approval tasks with ones matching the current pending faces."""
        await self._storage.resolve_tasks(proposal.proposal_id)
        return await self.tracker.request_authorization(
            proposal.proposal_id,
            requested_by=proposal.requester,
            dg_assignees=self._settings.dg_approvers,
            dcm_assignees=self._settings.dcm_approvers,
            due_days=self._settings.approval_due_days,
        )

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    async def submit_faces(self, proposal: Proposal, faces: Sequence[FaceRequest]) -> SubmissionResult:
        """Evaluate and store face requests for a proposal.

        Every face is validated before anything is written, so one invalid
        face rejects the whole submission.

        Raises:
            ValidationError: If any face lacks format, face count or cost
        """
        evaluator = await self.get_evaluator()
        verdicts = [evaluator.evaluate(face) for face in faces]

        stored_proposal = await self._storage.get_proposal(proposal.proposal_id)
        if stored_proposal is None:
            stored_proposal = await self._storage.save_proposal(proposal)

        stored: list[FaceRequest] = []
        for face, verdict in zip(faces, verdicts):
            face = face.model_copy(update={"proposal_id": proposal.proposal_id})
            stored.append(await self.tracker.record_verdict(face, verdict))

        tasks, events = await self._refresh_tasks(stored_proposal)
        check = await self.tracker.check_pending(proposal.proposal_id)
        await self._publish(events)

        logger.info(
            f"Submitted {len(stored)} face(s) for proposal {proposal.proposal_id}: "
            f"{len(check.pending_dg)} pending DG, {len(check.pending_dcm)} pending DCM"
        )
        return SubmissionResult(
            proposal_id=proposal.proposal_id,
            faces=stored,
            pending=check,
            tasks_created=len(tasks),
            events=events,
        )

    async def edit_face(self, face_id: int, **changes: Any) -> SubmissionResult:
        """Change a face's terms and re-evaluate both tracks from scratch.

        Prior approvals and rejections on the face are discarded.

        Raises:
            NotFoundError: If the face does not exist
            ValidationError: If the edited face lacks required terms
        """
        face = await self._storage.require_face(face_id)
        changes.pop("face_id", None)
        changes.pop("proposal_id", None)
        edited = FaceRequest.model_validate({**face.model_dump(), **changes})

        evaluator = await self.get_evaluator()
        verdict = evaluator.evaluate(edited)
        stored = await self.tracker.record_verdict(edited, verdict)

        proposal = await self._storage.require_proposal(face.proposal_id)
        tasks, events = await self._refresh_tasks(proposal)
        check = await self.tracker.check_pending(proposal.proposal_id)
        await self._publish(events)

        logger.info(f"Re-evaluated face {face_id} of proposal {face.proposal_id}")
        return SubmissionResult(
            proposal_id=face.proposal_id,
            faces=[stored],
            pending=check,
            tasks_created=len(tasks),
            events=events,
        )

    async def approve(self, proposal_id: str, track: Track | str) -> DecisionResult:
        """Approve every pending face of a proposal on one track."""
        result = await self.tracker.approve(proposal_id, track)
        await self._publish(result.events)
        return result

    async def reject(self, proposal_id: str, track: Track | str, reason: str) -> DecisionResult:
        """Reject every pending face on one track and notify the requester.

        The proposal status is not changed.
        """
        result = await self.tracker.reject(proposal_id, track, reason)

        proposal = await self._storage.require_proposal(proposal_id)
        await self._storage.create_task(
            ApprovalTask(
                proposal_id=proposal_id,
                kind=TaskKind.REJECTION_NOTICE,
                track=Track.parse(track),
                title=f"Authorization rejected - proposal #{proposal_id}",
                description=f"{result.track.upper()} rejected {result.count} face(s): {reason.strip()}",
                assignees=[proposal.requester] if proposal.requester else [],
                due_at=datetime.utcnow() + timedelta(days=self._settings.approval_due_days),
            )
        )

        await self._publish(result.events)
        return result

    async def change_status(self, proposal_id: str, status: ProposalStatus | str) -> Proposal:
        """Set a proposal's status, gating committed statuses on authorization.

        Raises:
            NotFoundError: If the proposal does not exist
            StateError: If the target status commits inventory while faces are pending
        """
        status = ProposalStatus(status)
        if status in GATED_STATUSES:
            await self.tracker.ensure_no_pending(proposal_id, action=f"set status to {status.value}")
        else:
            await self._storage.require_proposal(proposal_id)

        await self._storage.update_proposal_status(proposal_id, status)
        logger.info(f"Proposal {proposal_id} status set to {status.value}")
        return await self._storage.require_proposal(proposal_id)

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    async def _ensure_can_proceed(self, proposal_id: str) -> None:
        summary = await self.tracker.summarize(proposal_id)
        if not summary.can_proceed:
            raise StateError(
                f"Proposal {proposal_id} cannot book inventory: "
                f"{summary.pending_dg} pending DG, {summary.pending_dcm} pending DCM, "
                f"{summary.rejected} rejected face(s)",
                pending_dg=summary.pending_dg,
                pending_dcm=summary.pending_dcm,
            )

    async def _resolve_period(self, face: FaceRequest, period_id: Optional[int]) -> CalendarPeriod:
        """Use the given period, or the one containing the face's start date (today if unset)."""
        if period_id is not None:
            return await self._storage.require_period(period_id)
        day = face.period_start or datetime.utcnow().date()
        period = await self._storage.find_period_for_date(day)
        if period is None:
            raise NotFoundError("Period for date", day.isoformat())
        return period

    async def allocate(
        self,
        face_id: int,
        requests: Sequence[SlotRequest],
        period_id: Optional[int] = None,
        grouping_enabled: bool = True,
    ) -> AllocationResult:
        """Book spaces for a face once its proposal can proceed.

        Progress events reach the dispatcher while the batch runs; the
        remaining events are published when it completes.

        Raises:
            StateError: If the proposal has pending or rejected faces
        """
        face = await self._storage.require_face(face_id)
        await self._ensure_can_proceed(face.proposal_id)
        period = await self._resolve_period(face, period_id)

        result = await self.allocator.allocate(face_id, requests, period.period_id, grouping_enabled)
        await self._publish([e for e in result.events if e.name != EventName.ALLOCATION_PROGRESS])
        return result

    async def toggle(
        self,
        slot_id: int,
        face_id: int,
        period_id: Optional[int] = None,
        kind: RequestKind = RequestKind.PAID,
    ) -> ToggleResult:
        """Add or remove a single slot for a face.

        Raises:
            StateError: If the proposal has pending or rejected faces
        """
        face = await self._storage.require_face(face_id)
        await self._ensure_can_proceed(face.proposal_id)
        period = await self._resolve_period(face, period_id)

        result = await self.allocator.toggle_reservation(slot_id, face_id, period.period_id, kind)
        await self._publish(result.events)
        return result

    async def delete_reservations(self, reservation_ids: Sequence[int]) -> DeletionResult:
        """Soft-delete reservations."""
        result = await self.allocator.delete_reservations(reservation_ids)
        await self._publish(result.events)
        return result
