"""Authorization criteria models.

A criteria rule is keyed by (format, medium type, market bucket) and carries
optional thresholds for the two approval tracks:
- DG: effective tariff at or below a maximum, or total faces at or below a maximum
- DCM: effective tariff or total faces inside an inclusive band; a band
  missing either bound is ignored
"""

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ValidationError
from .core import AuthorizationStatus, FaceRequest, MediumType, Track


class ThresholdRange(BaseModel):
    """Optional inclusive range; either bound may be absent.

    An unset range (no bounds) never matches. An open range with only one
    bound is unbounded on the other side; a band (``closed``) matches only
    when both bounds are set.
    """

    model_config = ConfigDict(frozen=True)

    minimum: Optional[float] = None
    maximum: Optional[float] = None
    closed: bool = False

    @classmethod
    def up_to(cls, maximum: Optional[float]) -> "ThresholdRange":
        return cls(maximum=maximum)

    @classmethod
    def band(cls, minimum: Optional[float] = None, maximum: Optional[float] = None) -> "ThresholdRange":
        return cls(minimum=minimum, maximum=maximum, closed=True)

    @property
    def is_set(self) -> bool:
        return self.minimum is not None or self.maximum is not None

    def contains(self, value: float) -> bool:
        """Check whether a value falls inside the range (bounds inclusive)."""
        if not self.is_set:
            return False
        if self.closed and (self.minimum is None or self.maximum is None):
            return False
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True

    def describe(self, money: bool = False) -> str:
        """Render the range for reason strings."""

        def fmt(v: float) -> str:
            return f"${v:.2f}" if money else f"{v:g}"

        if self.minimum is not None and self.maximum is not None:
            return f"{fmt(self.minimum)}-{fmt(self.maximum)}"
        if self.maximum is not None:
            return f"<= {fmt(self.maximum)}"
        if self.minimum is not None:
            return f">= {fmt(self.minimum)}"
        return "unset"


class CriteriaRule(BaseModel):
    """Threshold row for one (format, medium type, market) combination."""

    rule_id: Optional[int] = None
    format: str
    medium_type: MediumType = MediumType.TRADITIONAL
    market: str

    dg_tariff: ThresholdRange = Field(default_factory=ThresholdRange)
    dg_faces: ThresholdRange = Field(default_factory=ThresholdRange)
    dcm_tariff: ThresholdRange = Field(default_factory=ThresholdRange.band)
    dcm_faces: ThresholdRange = Field(default_factory=ThresholdRange.band)

    active: bool = True

    @classmethod
    def from_thresholds(
        cls,
        format: str,
        medium_type: MediumType | str,
        market: str,
        tariff_max_dg: Optional[float] = None,
        faces_max_dg: Optional[int] = None,
        tariff_min_dcm: Optional[float] = None,
        tariff_max_dcm: Optional[float] = None,
        faces_min_dcm: Optional[int] = None,
        faces_max_dcm: Optional[int] = None,
        active: bool = True,
        rule_id: Optional[int] = None,
    ) -> "CriteriaRule":
        """Build a rule from the flat threshold columns used by administrators."""
        return cls(
            rule_id=rule_id,
            format=format.upper(),
            medium_type=MediumType(medium_type),
            market=market.upper(),
            dg_tariff=ThresholdRange.up_to(tariff_max_dg),
            dg_faces=ThresholdRange.up_to(faces_max_dg),
            dcm_tariff=ThresholdRange.band(tariff_min_dcm, tariff_max_dcm),
            dcm_faces=ThresholdRange.band(faces_min_dcm, faces_max_dcm),
            active=active,
        )

    def requires_dg(self, effective_tariff: float, total_faces: int) -> bool:
        return self.dg_tariff.contains(effective_tariff) or self.dg_faces.contains(total_faces)

    def requires_dcm(self, effective_tariff: float, total_faces: int) -> bool:
        return self.dcm_tariff.contains(effective_tariff) or self.dcm_faces.contains(total_faces)

    @property
    def key(self) -> tuple[str, MediumType, str]:
        return (self.format, self.medium_type, self.market)


class CriteriaTable(BaseModel):
    """Lookup table of criteria rules."""

    rules: list[CriteriaRule] = Field(default_factory=list)

    @classmethod
    def from_rules(cls, rules: Iterable[CriteriaRule]) -> "CriteriaTable":
        return cls(rules=list(rules))

    def find(
        self,
        format: str,
        medium_type: MediumType,
        market: str,
    ) -> Optional[CriteriaRule]:
        """Find the active rule for a key.

        When several active rows share a key the one with the lowest id wins.
        """
        matches = [
            rule
            for rule in self.rules
            if rule.active and rule.key == (format, medium_type, market)
        ]
        if not matches:
            return None
        return min(matches, key=lambda r: r.rule_id if r.rule_id is not None else 0)


class FaceTerms(BaseModel):
    """Commercial terms of a face request, validated for evaluation."""

    model_config = ConfigDict(frozen=True)

    format: str
    requested_faces: int
    bonus_faces: int = 0
    cost: float
    city: Optional[str] = None
    state: Optional[str] = None
    medium_type: Optional[str] = None
    public_tariff: float = 0.0

    @classmethod
    def from_face(cls, face: FaceRequest) -> "FaceTerms":
        """Extract terms from a face request.

        Raises:
            ValidationError: If format, face count or cost is missing or negative,
                or the period ends before it starts
        """
        missing = [
            name
            for name in ("format", "requested_faces", "cost")
            if getattr(face, name) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Missing required commercial fields: {missing}")
        if face.requested_faces < 0 or face.bonus_faces < 0:
            raise ValidationError("Face counts cannot be negative")
        if face.cost < 0:
            raise ValidationError("Cost cannot be negative")
        if face.period_start and face.period_end and face.period_end < face.period_start:
            raise ValidationError("Period end cannot be before period start")

        return cls(
            format=face.format,
            requested_faces=face.requested_faces,
            bonus_faces=face.bonus_faces or 0,
            cost=face.cost,
            city=face.city,
            state=face.state,
            medium_type=face.medium_type,
            public_tariff=face.public_tariff,
        )

    @property
    def total_faces(self) -> int:
        return self.requested_faces + self.bonus_faces

    @property
    def effective_tariff(self) -> float:
        """Cost per face, bonus faces included; zero when there are no faces."""
        total = self.total_faces
        return self.cost / total if total > 0 else 0.0


class AuthorizationVerdict(BaseModel):
    """Dual authorization verdict for one face request."""

    dg_status: AuthorizationStatus
    dcm_status: AuthorizationStatus
    effective_tariff: float
    total_faces: int
    reason_dg: Optional[str] = None
    reason_dcm: Optional[str] = None

    # Normalized lookup key (None when the format carries no criteria)
    format: Optional[str] = None
    medium_type: Optional[MediumType] = None
    market: Optional[str] = None
    rule_id: Optional[int] = None

    def status_for(self, track: Track) -> AuthorizationStatus:
        return self.dg_status if track == Track.DG else self.dcm_status

    @property
    def requires_authorization(self) -> bool:
        return AuthorizationStatus.PENDING in (self.dg_status, self.dcm_status)

    def apply_to(self, face: FaceRequest) -> FaceRequest:
        """Return a copy of the face carrying this verdict.

        Both tracks are recomputed from scratch; any earlier decision or
        rejection reason is discarded.
        """
        return face.model_copy(
            update={
                "dg_status": self.dg_status,
                "dcm_status": self.dcm_status,
                "reason_dg": self.reason_dg,
                "reason_dcm": self.reason_dcm,
                "rejection_reason": None,
                "effective_tariff": self.effective_tariff,
                "total_faces": self.total_faces,
            }
        )
