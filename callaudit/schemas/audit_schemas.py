"""
Validated data model for audit entries and analysis payloads.

Attributes are snake_case; the JSON form (exports, imports, LLM output,
API bodies) is camelCase. Unknown keys are kept so records round-trip
through other versions of the export format without loss.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def to_local_naive(moment: datetime) -> datetime:
    """Aware datetimes become naive local time; naive ones pass through."""
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into a naive local datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_local_naive(datetime.fromisoformat(text))


def epoch_millis(value: str) -> int:
    """Milliseconds since the epoch; naive timestamps are local time."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return round(datetime.fromisoformat(text).timestamp() * 1000)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)


# ============== ANALYSIS PAYLOAD ==============


class ScoreParameter(CamelModel):
    parameter: str
    score: int = Field(ge=0, le=10)
    justification: str = ""


class OverallScore(CamelModel):
    score: int = Field(default=0, ge=0, le=10)
    summary: str = ""


class PropertyDetail(CamelModel):
    detail: str
    mentioned: bool = False
    value: str = ""


class TimelineEvents(CamelModel):
    """Seconds into the call; None when the event was not observed."""
    property_introduction: Optional[int] = None
    details_sharing_start: Optional[int] = None
    site_visit_discussion_start: Optional[int] = None
    slot_confirmation: Optional[int] = None
    objection_raised: Optional[int] = None


class DetailsSharedConfirmation(CamelModel):
    mentioned: bool = False
    method: str = "Not Mentioned"


class MandatePointsDelivery(CamelModel):
    flow: str = "Not Applicable"  # Interactive | Monologue | Not Applicable
    summary: str = ""


class VisitConductedBy(CamelModel):
    person: str = ""
    frm_details_provided: bool = False
    pre_visit_call_instruction_given: bool = False


class AttemptSummary(CamelModel):
    attempted: bool = False
    summary: str = ""


class SiteVisitScheduled(CamelModel):
    mentioned: bool = False
    status: str = ""
    slot_confirmation: str = ""
    reschedule_red_flag: Optional[bool] = None
    red_flag_reason: Optional[str] = None
    virtual_visit_offered: Optional[bool] = None
    visit_conducted_by: Optional[VisitConductedBy] = None
    urgency_creation: Optional[AttemptSummary] = None


class RebuttalHandling(CamelModel):
    attempted: bool = False
    summary: str = ""
    effectiveness: str = "Not Applicable"
    approach: str = "Not Applicable"


class PropertyAnalysis(CamelModel):
    property_identifier: str = ""
    details: List[PropertyDetail] = Field(default_factory=list)
    timeline_events: TimelineEvents = Field(default_factory=TimelineEvents)
    details_shared_confirmation: DetailsSharedConfirmation = Field(default_factory=DetailsSharedConfirmation)
    mandate_points_delivery: Optional[MandatePointsDelivery] = None
    site_visit_scheduled: SiteVisitScheduled = Field(default_factory=SiteVisitScheduled)
    rebuttal_handling: Optional[RebuttalHandling] = None

    @property
    def has_compliance_issue(self) -> bool:
        visit = self.site_visit_scheduled
        return bool(visit.reschedule_red_flag or visit.virtual_visit_offered)


class ScoredSummary(CamelModel):
    score: int = Field(default=0, ge=0, le=10)
    summary: str = ""


class CallDynamics(CamelModel):
    energy_level: ScoredSummary = Field(default_factory=ScoredSummary)
    communication_style: str = ""
    engagement_summary: str = ""


class AreaForImprovement(CamelModel):
    area: str
    coaching_tip: str = ""


class CallMoments(CamelModel):
    positive_points: List[str] = Field(default_factory=list)
    areas_for_improvement: List[AreaForImprovement] = Field(default_factory=list)


class VisitLikelihood(CamelModel):
    score: int = Field(default=0, ge=0, le=100)  # percent
    justification: str = ""


class AnalysisResult(CamelModel):
    """Structured scoring of one call. Created once, never mutated after embedding."""

    agent_name: str = "Not Mentioned"
    call_duration: int = 0          # seconds
    analysis_duration: int = 0      # seconds spent by the analysis service
    detected_languages: str = ""
    is_reschedule_case: bool = False
    reschedule_summary: str = "Not Applicable"
    overall_score: OverallScore = Field(default_factory=OverallScore)
    detailed_scores: List[ScoreParameter] = Field(default_factory=list)
    properties_discussed: List[PropertyAnalysis] = Field(default_factory=list)
    buyer_requirements_gathered: AttemptSummary = Field(default_factory=AttemptSummary)
    cross_pitch_attempted: AttemptSummary = Field(default_factory=AttemptSummary)
    call_dynamics: CallDynamics = Field(default_factory=CallDynamics)
    call_moments: CallMoments = Field(default_factory=CallMoments)
    broker_behavior_analysis: ScoredSummary = Field(default_factory=ScoredSummary)
    visit_likelihood: VisitLikelihood = Field(default_factory=VisitLikelihood)

    def score_for(self, parameter: str) -> Optional[int]:
        for item in self.detailed_scores:
            if item.parameter == parameter:
                return item.score
        return None


# ============== AUDIT ENTRY ==============


class AuditEntry(CamelModel):
    id: int
    auditor_name: str = ""
    agent_email: str = ""
    timestamp: str
    file_name: str = ""
    analysis: AnalysisResult = Field(default_factory=AnalysisResult)
    audio_hash: Optional[str] = None
    nominated: Optional[bool] = None
    buyer_user_id: str = ""
    call_stamp: str = ""
    audio_data: Optional[str] = None        # base64
    audio_mime_type: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_must_be_iso(cls, value: str) -> str:
        try:
            parse_timestamp(value)
        except ValueError:
            raise ValueError(f"timestamp '{value}' is not ISO-8601")
        return value

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    @property
    def overall_score(self) -> int:
        return self.analysis.overall_score.score

    @property
    def is_nominated(self) -> bool:
        return self.nominated is True


# ============== API SCHEMAS ==============


class ImportSummary(BaseModel):
    """Outcome of a multi-file import."""
    files_processed: int = 0
    new_records: int = 0
    updated_records: int = 0
    failed_files: List[str] = Field(default_factory=list)
    failure_reasons: Dict[str, str] = Field(default_factory=dict)

    @property
    def message(self) -> str:
        text = (
            f"Successfully processed {self.files_processed} file(s).\n"
            f"- {self.new_records} new audit(s) added.\n"
            f"- {self.updated_records} existing audit(s) updated/overwritten."
        )
        if self.failed_files:
            text += (
                f"\n\nFailed to process {len(self.failed_files)} file(s): "
                f"{', '.join(self.failed_files)}. Please check if they are valid JSON files."
            )
        return text


class ImportResponse(BaseModel):
    summary: ImportSummary
    message: str
    total_records: int


class EmailRequest(BaseModel):
    email: str


class DismissRequest(BaseModel):
    ids: List[str]


class RootCauseRequest(BaseModel):
    parameter: str


class RebuttalRequest(BaseModel):
    objection: str


class SummaryResponse(BaseModel):
    title: str
    content: str
    audit_count: int
