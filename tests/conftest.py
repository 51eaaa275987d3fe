"""Pytest configuration and fixtures for OOH booking tests."""

import os
import tempfile
from datetime import date

import pytest

from ooh_booking.config import Settings
from ooh_booking.engines.criteria_evaluator import CriteriaEvaluator
from ooh_booking.events import CollectingDispatcher
from ooh_booking.models.core import (
    AuthorizationStatus,
    CalendarPeriod,
    FaceRequest,
    InventorySlot,
    MediumType,
    Orientation,
    Proposal,
)
from ooh_booking.models.criteria import CriteriaRule, CriteriaTable
from ooh_booking.storage.sqlite_backend import SQLiteBackend


@pytest.fixture
def criteria_rules() -> list[CriteriaRule]:
    """Criteria rows for the capital and Guadalajara."""
    return [
        CriteriaRule.from_thresholds(
            format="PARABUS",
            medium_type=MediumType.TRADITIONAL,
            market="CIUDAD DE MEXICO",
            faces_max_dg=5,
            tariff_min_dcm=2000,
            tariff_max_dcm=3000,
            rule_id=1,
        ),
        CriteriaRule.from_thresholds(
            format="PARABUS",
            medium_type=MediumType.DIGITAL,
            market="CIUDAD DE MEXICO",
            tariff_max_dg=800,
            rule_id=2,
        ),
        CriteriaRule.from_thresholds(
            format="COLUMNA",
            medium_type=MediumType.TRADITIONAL,
            market="GUADALAJARA",
            tariff_max_dg=1500,
            faces_min_dcm=20,
            faces_max_dcm=40,
            rule_id=3,
        ),
    ]


@pytest.fixture
def evaluator(criteria_rules: list[CriteriaRule]) -> CriteriaEvaluator:
    """Create an evaluator over the sample criteria."""
    return CriteriaEvaluator(CriteriaTable.from_rules(criteria_rules))


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        dg_approvers=["direccion.general@example.com"],
        dcm_approvers=["direccion.comercial@example.com"],
        progress_every=2,
    )


@pytest.fixture
def dispatcher() -> CollectingDispatcher:
    """Collect dispatched events in memory."""
    return CollectingDispatcher()


@pytest.fixture
async def storage():
    """Create a SQLite backend with temp database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "test.db")
        backend = SQLiteBackend(f"sqlite:///{db_path}")
        await backend.connect()
        yield backend
        await backend.disconnect()


@pytest.fixture
async def storage_with_rules(storage, criteria_rules):
    """Storage with the sample criteria rows saved."""
    for rule in criteria_rules:
        await storage.save_criteria_rule(rule.model_copy(update={"rule_id": None}))
    return storage


@pytest.fixture
def sample_proposal() -> Proposal:
    """Create a sample proposal."""
    return Proposal(
        proposal_id="1042",
        client_name="Refrescos del Norte",
        campaign_name="Verano 2026",
        requester="ventas@example.com",
    )


@pytest.fixture
def sample_face(sample_proposal: Proposal) -> FaceRequest:
    """A capital parabus face that needs both authorizations."""
    return FaceRequest(
        proposal_id=sample_proposal.proposal_id,
        city="Ciudad de México",
        state="CDMX",
        format="Parabus",
        medium_type="Tradicional",
        requested_faces=4,
        cost=10000,
    )


@pytest.fixture
async def inventory(storage, sample_proposal):
    """Seed an approved face, slots and overlapping calendar periods.

    Slots:
    - flow and counter_flow faces at one location, two spaces each
    - a flow face at another location with a single space
    - a single-space face with no orientation
    """
    await storage.save_proposal(sample_proposal)
    face = await storage.save_face(
        FaceRequest(
            proposal_id=sample_proposal.proposal_id,
            city="Monterrey",
            format="PARABUS",
            requested_faces=4,
            cost=40000,
            dg_status=AuthorizationStatus.APPROVED,
            dcm_status=AuthorizationStatus.APPROVED,
        )
    )

    flow = await storage.save_slot(
        InventorySlot(
            code="MTY-001-F",
            latitude=25.6866,
            longitude=-100.3161,
            city="Monterrey",
            format="PARABUS",
            orientation=Orientation.FLOW,
        ),
        spaces=2,
    )
    counter_flow = await storage.save_slot(
        InventorySlot(
            code="MTY-001-C",
            latitude=25.6866,
            longitude=-100.3161,
            city="Monterrey",
            format="PARABUS",
            orientation=Orientation.COUNTER_FLOW,
        ),
        spaces=2,
    )
    other_flow = await storage.save_slot(
        InventorySlot(
            code="MTY-002-F",
            latitude=25.6700,
            longitude=-100.3000,
            city="Monterrey",
            format="PARABUS",
            orientation=Orientation.FLOW,
        ),
        spaces=1,
    )
    single = await storage.save_slot(
        InventorySlot(
            code="GDL-010",
            latitude=20.6597,
            longitude=-103.3496,
            city="Guadalajara",
            format="COLUMNA",
        ),
        spaces=1,
    )

    first = await storage.save_period(
        CalendarPeriod(year=2026, number=1, start_date=date(2026, 1, 1), end_date=date(2026, 1, 14))
    )
    second = await storage.save_period(
        CalendarPeriod(year=2026, number=2, start_date=date(2026, 1, 15), end_date=date(2026, 1, 28))
    )
    straddling = await storage.save_period(
        CalendarPeriod(year=2026, number=99, start_date=date(2026, 1, 10), end_date=date(2026, 1, 20))
    )

    return {
        "proposal": sample_proposal,
        "face": face,
        "flow": flow,
        "counter_flow": counter_flow,
        "other_flow": other_flow,
        "single": single,
        "first": first,
        "second": second,
        "straddling": straddling,
    }
