"""Criteria Evaluator - Dual authorization verdict per face request.

Evaluates a face request against the criteria table:
- Normalizes format, market and medium type
- Computes total faces (requested + bonus) and effective tariff
- Flags the DG track when tariff or volume is at or below its maximum
- Flags the DCM track when tariff or volume falls inside its band
"""

import logging
import unicodedata
from typing import Optional, Sequence

from ..models.core import AuthorizationStatus, FaceRequest, MediumType
from ..models.criteria import (
    AuthorizationVerdict,
    CriteriaRule,
    CriteriaTable,
    FaceTerms,
)

logger = logging.getLogger(__name__)

DEFAULT_CRITERIA_FORMATS = ("PARABUS", "COLUMNA")
DEFAULT_PRINCIPAL_MARKETS = ("CIUDAD DE MEXICO", "GUADALAJARA", "MONTERREY")

CAPITAL_MARKET = "CIUDAD DE MEXICO"
OTHER_MARKET = "OTRAS"

# State names that mean the capital; its cities are boroughs, so the state wins.
CAPITAL_STATE_MARKERS = ("CIUDAD DE MEXICO", "CDMX")
CAPITAL_STATE_NAMES = ("DISTRITO FEDERAL", "DF")

MARKET_ALIASES = (
    ("CDMX", CAPITAL_MARKET),
    ("MEXICO", CAPITAL_MARKET),
    ("GDL", "GUADALAJARA"),
    ("MTY", "MONTERREY"),
)


def strip_accents(value: str) -> str:
    """Remove diacritics so 'MÉXICO' compares equal to 'MEXICO'."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def _clean(value: str) -> str:
    return strip_accents(value.upper().strip())


def normalize_market(
    city: Optional[str],
    state: Optional[str],
    principal_markets: Sequence[str] = DEFAULT_PRINCIPAL_MARKETS,
) -> str:
    """Bucket a city/state pair into a principal market or 'OTRAS'."""
    if state:
        state_norm = _clean(state)
        if any(marker in state_norm for marker in CAPITAL_STATE_MARKERS) or (
            state_norm in CAPITAL_STATE_NAMES
        ):
            return CAPITAL_MARKET

    if not city or not city.strip():
        return OTHER_MARKET
    city_norm = _clean(city)

    for market in principal_markets:
        if market in city_norm or city_norm in market:
            return market

    for alias, market in MARKET_ALIASES:
        if alias in city_norm:
            return market

    return OTHER_MARKET


def normalize_format(
    format: Optional[str],
    criteria_formats: Sequence[str] = DEFAULT_CRITERIA_FORMATS,
) -> Optional[str]:
    """Map a format onto the criteria-bearing set; None when no criteria apply."""
    if not format:
        return None
    format_norm = _clean(format)
    for candidate in criteria_formats:
        if candidate in format_norm:
            return candidate
    return None


def normalize_medium_type(medium_type: Optional[str]) -> MediumType:
    """Traditional unless the label says digital."""
    if not medium_type:
        return MediumType.TRADITIONAL
    if "DIG" in _clean(medium_type):
        return MediumType.DIGITAL
    return MediumType.TRADITIONAL


def _dg_reason(rule: CriteriaRule, tariff: float, faces: int) -> Optional[str]:
    parts = []
    if rule.dg_tariff.contains(tariff):
        parts.append(f"Effective tariff ${tariff:.2f} {rule.dg_tariff.describe(money=True)} (DG limit)")
    if rule.dg_faces.contains(faces):
        parts.append(f"Total faces {faces} {rule.dg_faces.describe()} (DG limit)")
    return "; ".join(parts) or None


def _dcm_reason(rule: CriteriaRule, tariff: float, faces: int) -> Optional[str]:
    parts = []
    if rule.dcm_tariff.contains(tariff):
        parts.append(
            f"Effective tariff ${tariff:.2f} within DCM range ({rule.dcm_tariff.describe(money=True)})"
        )
    if rule.dcm_faces.contains(faces):
        parts.append(f"Total faces {faces} within DCM range ({rule.dcm_faces.describe()})")
    return "; ".join(parts) or None


class CriteriaEvaluator:
    """Evaluates face requests against a criteria table.

    Example:
        evaluator = CriteriaEvaluator(CriteriaTable.from_rules(rules))
        verdict = evaluator.evaluate_terms(terms)
        if verdict.requires_authorization:
            ...
    """

    def __init__(
        self,
        table: CriteriaTable,
        criteria_formats: Sequence[str] = DEFAULT_CRITERIA_FORMATS,
        principal_markets: Sequence[str] = DEFAULT_PRINCIPAL_MARKETS,
    ) -> None:
        """Initialize the evaluator.

        Args:
            table: Criteria rules to look up
            criteria_formats: Formats that carry criteria; all others auto-approve
            principal_markets: Markets with their own criteria rows
        """
        self._table = table
        self._criteria_formats = tuple(f.upper() for f in criteria_formats)
        self._principal_markets = tuple(m.upper() for m in principal_markets)

    @property
    def table(self) -> CriteriaTable:
        return self._table

    def evaluate(self, face: FaceRequest) -> AuthorizationVerdict:
        """Evaluate a face request.

        Raises:
            ValidationError: If format, face count or cost is missing
        """
        return self.evaluate_terms(FaceTerms.from_face(face))

    def evaluate_terms(self, terms: FaceTerms) -> AuthorizationVerdict:
        """Compute the dual authorization verdict for validated terms."""
        total_faces = terms.total_faces
        effective_tariff = terms.effective_tariff

        format_norm = normalize_format(terms.format, self._criteria_formats)
        if format_norm is None:
            return AuthorizationVerdict(
                dg_status=AuthorizationStatus.APPROVED,
                dcm_status=AuthorizationStatus.APPROVED,
                effective_tariff=effective_tariff,
                total_faces=total_faces,
            )

        market = normalize_market(terms.city, terms.state, self._principal_markets)
        medium_type = normalize_medium_type(terms.medium_type)

        logger.debug(
            f"Looking up criteria for format={format_norm} medium={medium_type.value} "
            f"market={market} tariff={effective_tariff:.2f} faces={total_faces}"
        )

        rule = self._table.find(format_norm, medium_type, market)
        if rule is None:
            logger.debug("No active criteria rule; approving both tracks")
            return AuthorizationVerdict(
                dg_status=AuthorizationStatus.APPROVED,
                dcm_status=AuthorizationStatus.APPROVED,
                effective_tariff=effective_tariff,
                total_faces=total_faces,
                format=format_norm,
                medium_type=medium_type,
                market=market,
            )

        requires_dg = rule.requires_dg(effective_tariff, total_faces)
        requires_dcm = rule.requires_dcm(effective_tariff, total_faces)

        return AuthorizationVerdict(
            dg_status=AuthorizationStatus.PENDING if requires_dg else AuthorizationStatus.APPROVED,
            dcm_status=AuthorizationStatus.PENDING if requires_dcm else AuthorizationStatus.APPROVED,
            effective_tariff=effective_tariff,
            total_faces=total_faces,
            reason_dg=_dg_reason(rule, effective_tariff, total_faces) if requires_dg else None,
            reason_dcm=_dcm_reason(rule, effective_tariff, total_faces) if requires_dcm else None,
            format=format_norm,
            medium_type=medium_type,
            market=market,
            rule_id=rule.rule_id,
        )
