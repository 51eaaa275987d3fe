"""Authorization Tracker - Dual-track approval state per proposal.

Each face request carries two independent tracks (DG and DCM), each
approved, pending or rejected. The tracker:
- Persists evaluator verdicts on faces
- Files approval tasks for tracks with pending faces
- Bulk-approves or bulk-rejects the pending faces of one track
- Aggregates pending/approved/rejected counts for gating decisions
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from ..errors import StateError, ValidationError
from ..events.models import DomainEvent
from ..models.core import (
    ApprovalTask,
    AuthorizationStatus,
    FaceRequest,
    TaskKind,
    Track,
)
from ..models.criteria import AuthorizationVerdict
from ..models.results import AuthorizationSummary, DecisionResult, PendingCheck
from ..storage.base import StorageBackend

logger = logging.getLogger(__name__)

TRACK_TITLES = {
    Track.DG: "general direction",
    Track.DCM: "commercial direction",
}


def pending_check(proposal_id: str, faces: Iterable[FaceRequest]) -> PendingCheck:
    """Fold faces into the per-track lists of pending face IDs."""
    pending_dg: list[int] = []
    pending_dcm: list[int] = []
    for face in faces:
        if face.dg_status == AuthorizationStatus.PENDING:
            pending_dg.append(face.face_id)
        if face.dcm_status == AuthorizationStatus.PENDING:
            pending_dcm.append(face.face_id)
    return PendingCheck(
        proposal_id=proposal_id,
        has_pending=bool(pending_dg or pending_dcm),
        pending_dg=pending_dg,
        pending_dcm=pending_dcm,
    )


def summarize_faces(proposal_id: str, faces: Iterable[FaceRequest]) -> AuthorizationSummary:
    """Fold faces into aggregate authorization counts."""
    summary = AuthorizationSummary(proposal_id=proposal_id)
    for face in faces:
        summary.total += 1
        if face.is_fully_approved:
            summary.fully_approved += 1
        if face.dg_status == AuthorizationStatus.PENDING:
            summary.pending_dg += 1
        if face.dcm_status == AuthorizationStatus.PENDING:
            summary.pending_dcm += 1
        if face.is_rejected:
            summary.rejected += 1
    return summary


class AuthorizationTracker:
    """Tracks and resolves the two authorization tracks of a proposal.

    Example:
        tracker = AuthorizationTracker(storage)
        check = await tracker.check_pending("1042")
        if check.pending_dg:
            result = await tracker.approve("1042", Track.DG)
    """

    def __init__(self, storage: StorageBackend) -> None:
        """Initialize the tracker.

        Args:
            storage: Connected storage backend
        """
        self._storage = storage

    async def record_verdict(self, face: FaceRequest, verdict: AuthorizationVerdict) -> FaceRequest:
        """Store a fresh verdict on a face; both tracks restart from the verdict."""
        stored = await self._storage.save_face(verdict.apply_to(face))
        logger.debug(
            f"Face {stored.face_id} of proposal {stored.proposal_id}: "
            f"dg={stored.dg_status.value} dcm={stored.dcm_status.value}"
        )
        return stored

    async def check_pending(self, proposal_id: str) -> PendingCheck:
        """List faces of a proposal still pending on each track.

        Raises:
            NotFoundError: If the proposal does not exist
        """
        await self._storage.require_proposal(proposal_id)
        faces = await self._storage.list_faces(proposal_id)
        return pending_check(proposal_id, faces)

    async def summarize(self, proposal_id: str) -> AuthorizationSummary:
        """Aggregate authorization counts for a proposal.

        Raises:
            NotFoundError: If the proposal does not exist
        """
        await self._storage.require_proposal(proposal_id)
        faces = await self._storage.list_faces(proposal_id)
        return summarize_faces(proposal_id, faces)

    async def ensure_no_pending(self, proposal_id: str, action: str = "change status") -> PendingCheck:
        """Gate a commitment on full resolution of both tracks.

        Raises:
            StateError: If any face is still pending, with counts per track
        """
        check = await self.check_pending(proposal_id)
        if check.has_pending:
            raise StateError(
                f"Cannot {action} for proposal {proposal_id}: "
                f"{len(check.pending_dg)} face(s) pending DG and "
                f"{len(check.pending_dcm)} face(s) pending DCM authorization",
                pending_dg=len(check.pending_dg),
                pending_dcm=len(check.pending_dcm),
            )
        return check

    async def request_authorization(
        self,
        proposal_id: str,
        requested_by: Optional[str] = None,
        dg_assignees: Sequence[str] = (),
        dcm_assignees: Sequence[str] = (),
        due_days: int = 7,
    ) -> tuple[list[ApprovalTask], list[DomainEvent]]:
        """File one approval task per track with pending faces.

        Returns:
            Created tasks and the authorization.required events
        """
        check = await self.check_pending(proposal_id)
        assignees = {Track.DG: list(dg_assignees), Track.DCM: list(dcm_assignees)}
        pending = {Track.DG: check.pending_dg, Track.DCM: check.pending_dcm}
        due_at = datetime.utcnow() + timedelta(days=due_days)

        tasks: list[ApprovalTask] = []
        events: list[DomainEvent] = []
        for track in Track:
            face_ids = pending[track]
            if not face_ids:
                continue
            description = (
                f"Authorization from {TRACK_TITLES[track]} required for "
                f"{len(face_ids)} face(s) of proposal #{proposal_id}"
            )
            if requested_by:
                description += f" (requested by {requested_by})"
            task = await self._storage.create_task(
                ApprovalTask(
                    proposal_id=proposal_id,
                    kind=TaskKind.AUTHORIZATION,
                    track=track,
                    title=f"Authorization required - proposal #{proposal_id}",
                    description=description,
                    assignees=assignees[track],
                    due_at=due_at,
                )
            )
            tasks.append(task)
            events.append(DomainEvent.authorization_required(track.value, proposal_id, face_ids))

        return tasks, events

    async def approve(self, proposal_id: str, track: Track | str) -> DecisionResult:
        """Approve every pending face of a proposal on one track.

        The other track is left untouched.

        Raises:
            NotFoundError: If the proposal does not exist
            StateError: If no face is pending on the track
        """
        track = Track.parse(track)
        await self._storage.require_proposal(proposal_id)

        approved = await self._storage.transition_track(
            proposal_id,
            track,
            AuthorizationStatus.PENDING,
            AuthorizationStatus.APPROVED,
        )
        if not approved:
            raise StateError(f"No faces pending {track.value.upper()} authorization for proposal {proposal_id}")

        check = pending_check(proposal_id, await self._storage.list_faces(proposal_id))
        if not check.has_pending:
            resolved = await self._storage.resolve_tasks(proposal_id)
        else:
            remaining = check.pending_dg if track == Track.DG else check.pending_dcm
            resolved = 0 if remaining else await self._storage.resolve_tasks(proposal_id, track)

        logger.info(
            f"Approved {len(approved)} face(s) on {track.value.upper()} for proposal {proposal_id}; "
            f"resolved {resolved} task(s)"
        )
        return DecisionResult(
            proposal_id=proposal_id,
            track=track.value,
            count=len(approved),
            resolved_tasks=resolved,
            events=[DomainEvent.authorization_approved(track.value, proposal_id, len(approved))],
        )

    async def reject(self, proposal_id: str, track: Track | str, reason: str) -> DecisionResult:
        """Reject every pending face of a proposal on one track.

        Only face-level track state changes; the proposal status is left for
        the surrounding workflow to decide.

        Raises:
            ValidationError: If no reason is given
            NotFoundError: If the proposal does not exist
            StateError: If no face is pending on the track
        """
        track = Track.parse(track)
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        await self._storage.require_proposal(proposal_id)

        rejected = await self._storage.transition_track(
            proposal_id,
            track,
            AuthorizationStatus.PENDING,
            AuthorizationStatus.REJECTED,
            reason=reason.strip(),
        )
        if not rejected:
            raise StateError(f"No faces pending {track.value.upper()} authorization for proposal {proposal_id}")

        resolved = await self._storage.resolve_tasks(proposal_id, track)

        logger.info(
            f"Rejected {len(rejected)} face(s) on {track.value.upper()} for proposal {proposal_id}: {reason}"
        )
        return DecisionResult(
            proposal_id=proposal_id,
            track=track.value,
            count=len(rejected),
            resolved_tasks=resolved,
            events=[DomainEvent.authorization_rejected(track.value, proposal_id, reason.strip())],
        )
