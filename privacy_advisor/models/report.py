"""
Report data models: evidence, issues and the synthesized report payload.

All models serialize with camelCase aliases (``model_dump(by_alias=True)``)
to match the public report JSON shape.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class IssueSeverity(str, Enum):
    """Issue severity enumeration."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


SEVERITY_RANK: Dict[str, int] = {
    IssueSeverity.CRITICAL.value: 5,
    IssueSeverity.HIGH.value: 4,
    IssueSeverity.MEDIUM.value: 3,
    IssueSeverity.LOW.value: 2,
    IssueSeverity.INFO.value: 1,
}


def severity_rank(severity: Union[IssueSeverity, str, None]) -> int:
    """Numeric rank of a severity; unknown values rank as info."""
    if isinstance(severity, IssueSeverity):
        severity = severity.value
    return SEVERITY_RANK.get((severity or '').lower(), SEVERITY_RANK['info'])


class DataSharingLevel(str, Enum):
    """Qualitative data sharing summary."""
    NONE = "None"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Reference(_CamelModel):
    """External reading attached to an issue."""
    label: Optional[str] = None
    url: str


class Evidence(_CamelModel):
    """A single raw finding produced by scan execution."""
    id: str
    scan_id: str
    kind: str = Field(..., description="tracker, thirdparty, cookie, header, insecure, tls, policy, fingerprint, ...")
    severity: int = Field(..., ge=1, le=5)
    title: str
    details: Any = Field(default=None, description="Opaque structured payload")
    created_at: Optional[datetime] = None


class Issue(_CamelModel):
    """A curated, user-facing finding carrying remediation guidance."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    scan_id: str
    key: Optional[str] = None
    severity: Union[IssueSeverity, str]
    category: str
    title: str
    summary: Optional[str] = None
    how_to_fix: Optional[str] = None
    why_it_matters: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)
    sort_weight: Optional[int] = None

    @field_validator('severity', mode='before')
    @classmethod
    def normalize_severity(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('references', mode='before')
    @classmethod
    def default_references(cls, v):
        """Absent or non-list references become an empty list."""
        if isinstance(v, (list, tuple)):
            return list(v)
        return []

    @property
    def rank(self) -> int:
        return severity_rank(self.severity)


class ScanRecord(_CamelModel):
    """The scan a report is built for; extra columns pass through untouched."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    id: str
    input: str
    normalized_input: Optional[str] = None
    slug: Optional[str] = None
    status: str = "queued"
    score: Optional[int] = None
    label: Optional[str] = None
    summary: Optional[str] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ReportIssue(_CamelModel):
    """Issue as it appears in a report (key always populated)."""
    id: str
    key: str
    category: str
    severity: Union[IssueSeverity, str]
    title: str
    summary: Optional[str] = None
    how_to_fix: Optional[str] = None
    why_it_matters: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)
    sort_weight: Optional[int] = None


class ReportTopFix(_CamelModel):
    """One of up to three highest-priority issues surfaced in a report."""
    id: str
    key: str
    title: str
    category: str
    severity: Union[IssueSeverity, str]
    why_it_matters: Optional[str] = None
    how_to_fix: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)


class ReportMeta(_CamelModel):
    data_sharing: DataSharingLevel
    domain: str


class ReportPayload(_CamelModel):
    """Report computed fresh on each request; never persisted."""
    scan: ScanRecord
    issues: List[ReportIssue] = Field(default_factory=list)
    evidence: List[Evidence] = Field(default_factory=list)
    top_fixes: List[ReportTopFix] = Field(default_factory=list, max_length=3)
    meta: ReportMeta

    def to_response(self) -> Dict[str, Any]:
        """JSON-ready dict using the public camelCase field names."""
        return self.model_dump(mode='json', by_alias=True)


class ScoreLabel(str, Enum):
    """Qualitative label for a privacy score."""
    SAFE = "Safe"
    CAUTION = "Caution"
    HIGH_RISK = "High Risk"

    @classmethod
    def for_score(cls, score: int) -> 'ScoreLabel':
        if score >= 80:
            return cls.SAFE
        if score >= 50:
            return cls.CAUTION
        return cls.HIGH_RISK


class ScoreExplanation(_CamelModel):
    """One penalty or bonus applied while scoring."""
    evidence_id: str
    points: int
    reason: str


class ScoreResult(_CamelModel):
    """Score, label and derived issues for a finished scan."""
    score: int = Field(..., ge=0, le=100)
    label: ScoreLabel
    summary: str
    explanations: List[ScoreExplanation] = Field(default_factory=list)
    issues: List[Issue] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
