from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from feedback_analytics.schemas.common import CamelModel, UTCDatetimeMixin
from feedback_analytics.services.periods import PERIOD_KINDS

PRIORITIES = ("low", "medium", "high", "critical")
SATISFACTION_SCORES = ("1", "2", "3", "4", "5")
ESCALATION_LEVELS = ("1", "2", "3")
ROLES = ("admin", "manager", "agent", "customer")
CHANNELS = ("email", "sms", "push", "in_app")


def _zeroed(keys: tuple[str, ...]) -> dict[str, int]:
    return {key: 0 for key in keys}


# --- Feedback metrics -------------------------------------------------------


class FeedbackCounts(CamelModel):
    total: int = 0
    new: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0


class PriorityDistribution(CamelModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0


class DurationStatistics(CamelModel):
    """Duration statistics in milliseconds."""

    average: float = 0
    median: float = 0
    min: float = 0
    max: float = 0
    percentile95: float = 0


class SatisfactionStatistics(CamelModel):
    average: float = 0
    count: int = 0
    distribution: dict[str, int] = Field(default_factory=lambda: _zeroed(SATISFACTION_SCORES))


class EscalationStatistics(CamelModel):
    count: int = 0
    percentage: float = Field(0, ge=0, le=100)
    by_level: dict[str, int] = Field(default_factory=lambda: _zeroed(ESCALATION_LEVELS))


class CommentStatistics(CamelModel):
    total: int = 0
    average: float = 0
    internal: int = 0
    external: int = 0


class MetricsDocumentBase(UTCDatetimeMixin, CamelModel):
    model_config = ConfigDict(from_attributes=True)

    period: str
    period_start: datetime
    period_end: datetime
    company_id: str | None = None
    calculated_at: datetime


class FeedbackMetricsDocument(MetricsDocumentBase):
    """Aggregated feedback metrics for one (period, window start, scope)."""

    counts: FeedbackCounts = Field(default_factory=FeedbackCounts)
    by_priority: PriorityDistribution = Field(default_factory=PriorityDistribution)
    by_category: dict[str, int] = Field(default_factory=dict)
    response_times: DurationStatistics = Field(default_factory=DurationStatistics)
    resolution_times: DurationStatistics = Field(default_factory=DurationStatistics)
    satisfaction: SatisfactionStatistics = Field(default_factory=SatisfactionStatistics)
    escalations: EscalationStatistics = Field(default_factory=EscalationStatistics)
    comments: CommentStatistics = Field(default_factory=CommentStatistics)


# --- User metrics -----------------------------------------------------------


class UserCounts(CamelModel):
    total: int = 0
    active: int = 0
    new: int = 0


class RoleDistribution(CamelModel):
    admin: int = 0
    manager: int = 0
    agent: int = 0
    customer: int = 0


class LoginActivity(CamelModel):
    average_logins: float = 0
    average_session_duration: float = 0
    total_sessions: int = 0
    total_logins: int = 0


class Engagement(CamelModel):
    average_feedback_submissions: float = 0
    average_comments: float = 0
    average_responses: float = 0
    average_resolution_time: float = 0


class Performance(CamelModel):
    """Reserved for cross-service joins; always zero for now."""

    average_feedback_handled: float = 0
    average_resolution_rate: float = 0
    average_satisfaction_score: float = 0
    average_response_time: float = 0


class ChannelStatistics(CamelModel):
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    read: int = 0


class ChannelBreakdown(CamelModel):
    email: ChannelStatistics = Field(default_factory=ChannelStatistics)
    sms: ChannelStatistics = Field(default_factory=ChannelStatistics)
    push: ChannelStatistics = Field(default_factory=ChannelStatistics)
    in_app: ChannelStatistics = Field(default_factory=ChannelStatistics)


class NotificationStatistics(CamelModel):
    sent: int = 0
    read: int = 0
    read_rate: float = Field(0, ge=0, le=100)
    by_channel: ChannelBreakdown = Field(default_factory=ChannelBreakdown)


class UserMetricsDocument(MetricsDocumentBase):
    """Aggregated user metrics for one (period, window start, scope)."""

    counts: UserCounts = Field(default_factory=UserCounts)
    by_role: RoleDistribution = Field(default_factory=RoleDistribution)
    activity: LoginActivity = Field(default_factory=LoginActivity)
    engagement: Engagement = Field(default_factory=Engagement)
    performance: Performance = Field(default_factory=Performance)
    notifications: NotificationStatistics = Field(default_factory=NotificationStatistics)


# --- Query / trigger / summary ----------------------------------------------


class AggregationTriggerRequest(CamelModel):
    period: str
    company_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        if v not in PERIOD_KINDS:
            raise ValueError(
                "Invalid period. Must be one of: " + ", ".join(PERIOD_KINDS)
            )
        return v


class AggregationTriggerResponse(CamelModel):
    accepted: bool
    job_name: str
    message: str
    period: str
    company_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class MetricChange(CamelModel):
    value: float
    previous_value: float
    change: float
    percent_change: float


class FeedbackSummary(CamelModel):
    total: MetricChange | None = None
    resolved: MetricChange | None = None
    average_response_time: MetricChange | None = None
    average_resolution_time: MetricChange | None = None
    satisfaction_score: MetricChange | None = None
    top_categories: list[dict[str, Any]] = Field(default_factory=list)


class UserSummary(CamelModel):
    total: MetricChange | None = None
    active: MetricChange | None = None
    new: MetricChange | None = None
    notification_read_rate: MetricChange | None = None


class MetricsSummary(UTCDatetimeMixin, CamelModel):
    period: str
    company_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    feedback: FeedbackSummary = Field(default_factory=FeedbackSummary)
    users: UserSummary = Field(default_factory=UserSummary)


class JobStateResponse(UTCDatetimeMixin, CamelModel):
    name: str
    status: str
    last_outcome: str | None = None
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    run_count: int = 0
    skipped_count: int = 0
    last_error: str | None = None
    last_result: dict[str, Any] | None = None
