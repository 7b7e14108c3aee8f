"""Metric assemblers: grouped event reads -> reducers -> upserted documents.

Each assembler reads every grouping its metric family needs for one window
and scope, maps the reduced values into the fixed document shape (zero when
nothing matched) and upserts it through ``MetricsService``.
"""

import logging
from collections.abc import Mapping
from typing import Any

from feedback_analytics.models.metrics import FeedbackMetrics, UserMetrics
from feedback_analytics.schemas.metrics import (
    CHANNELS,
    ESCALATION_LEVELS,
    PRIORITIES,
    ROLES,
    SATISFACTION_SCORES,
    ChannelBreakdown,
    ChannelStatistics,
    CommentStatistics,
    DurationStatistics,
    Engagement,
    EscalationStatistics,
    FeedbackCounts,
    LoginActivity,
    NotificationStatistics,
    Performance,
    PriorityDistribution,
    RoleDistribution,
    SatisfactionStatistics,
    UserCounts,
)
from feedback_analytics.services.event_store import EventStoreReader
from feedback_analytics.services.metrics_service import MetricsService
from feedback_analytics.services.periods import PeriodWindow
from feedback_analytics.services.statistics import (
    count_by_key,
    distribution_stats,
    numeric_samples,
    rate,
    safe_average,
)
from feedback_analytics.services.user_directory import UserDirectoryClient

logger = logging.getLogger(__name__)

FEEDBACK_CREATED = "feedback.created"
FEEDBACK_UPDATED = "feedback.updated"
FEEDBACK_RESPONDED = "feedback.responded"
FEEDBACK_RESOLVED = "feedback.resolved"
FEEDBACK_CLOSED = "feedback.closed"
FEEDBACK_SATISFACTION = "feedback.satisfaction"
FEEDBACK_ESCALATED = "feedback.escalated"
FEEDBACK_COMMENTED = "feedback.commented"

FEEDBACK_COUNTED_EVENTS = (
    FEEDBACK_CREATED,
    FEEDBACK_RESOLVED,
    FEEDBACK_CLOSED,
    FEEDBACK_ESCALATED,
    FEEDBACK_COMMENTED,
)
ENGAGEMENT_EVENTS = (FEEDBACK_CREATED, FEEDBACK_COMMENTED, FEEDBACK_RESPONDED)

USER_CREATED = "user.created"
USER_LOGIN = "user.login"
USER_ACTIVE = "user.active"

NOTIFICATION_EVENTS = {
    "notification.sent": "sent",
    "notification.delivered": "delivered",
    "notification.opened": "opened",
    "notification.read": "read",
}
CHANNEL_ALIASES = {"inapp": "in_app", "in_app": "in_app", "in-app": "in_app"}


def normalize_channel(channel: str | None) -> str | None:
    """Map a payload channel onto email/sms/push/in_app; ``None`` if unknown."""
    if not channel:
        return None
    key = channel.strip().lower()
    key = CHANNEL_ALIASES.get(key, key)
    return key if key in CHANNELS else None


def _score_key(score: float) -> str | None:
    if score != int(score):
        return None
    return str(int(score))


# --- Pure builders ----------------------------------------------------------


def build_feedback_document(
    *,
    event_counts: Mapping[str, int],
    in_progress: int,
    priority_counts: Mapping[str, int],
    category_counts: Mapping[str, int],
    response_samples: list[float],
    resolution_samples: list[float],
    satisfaction_values: list[Any],
    escalation_levels: Mapping[str, int],
    comment_types: Mapping[str, int],
) -> dict[str, dict[str, Any]]:
    """Reduce feedback groupings into the sections of a feedback document."""
    created = event_counts.get(FEEDBACK_CREATED, 0)
    counts = FeedbackCounts(
        total=created,
        new=created,
        in_progress=in_progress,
        resolved=event_counts.get(FEEDBACK_RESOLVED, 0),
        closed=event_counts.get(FEEDBACK_CLOSED, 0),
    )

    scores = numeric_samples(satisfaction_values)
    score_keys = [_score_key(score) for score in scores]
    satisfaction = SatisfactionStatistics(
        average=safe_average(sum(scores), len(scores)),
        count=len(scores),
        distribution=count_by_key(
            ((key, 1) for key in score_keys if key is not None), SATISFACTION_SCORES
        ),
    )

    escalation_count = event_counts.get(FEEDBACK_ESCALATED, 0)
    escalations = EscalationStatistics(
        count=escalation_count,
        percentage=rate(escalation_count, counts.total),
        by_level=count_by_key(escalation_levels, ESCALATION_LEVELS),
    )

    comment_total = event_counts.get(FEEDBACK_COMMENTED, 0)
    comments = CommentStatistics(
        total=comment_total,
        average=safe_average(comment_total, counts.total),
        internal=comment_types.get("internal", 0),
        external=comment_types.get("external", 0),
    )

    return {
        "counts": counts.model_dump(),
        "by_priority": PriorityDistribution(
            **count_by_key(priority_counts, PRIORITIES)
        ).model_dump(),
        "by_category": count_by_key(category_counts),
        "response_times": DurationStatistics(
            **distribution_stats(response_samples).as_dict()
        ).model_dump(),
        "resolution_times": DurationStatistics(
            **distribution_stats(resolution_samples).as_dict()
        ).model_dump(),
        "satisfaction": satisfaction.model_dump(),
        "escalations": escalations.model_dump(),
        "comments": comments.model_dump(),
    }


def build_notification_statistics(
    channel_counts: Mapping[tuple[str, str | None], int],
) -> NotificationStatistics:
    by_channel = {channel: ChannelStatistics() for channel in CHANNELS}
    totals = {field: 0 for field in NOTIFICATION_EVENTS.values()}

    for (event_type, raw_channel), count in channel_counts.items():
        field = NOTIFICATION_EVENTS.get(event_type)
        if field is None:
            continue
        totals[field] += count
        channel = normalize_channel(raw_channel)
        if channel is not None:
            stats = by_channel[channel]
            setattr(stats, field, getattr(stats, field) + count)

    return NotificationStatistics(
        sent=totals["sent"],
        read=totals["read"],
        read_rate=rate(totals["read"], totals["sent"]),
        by_channel=ChannelBreakdown(**by_channel),
    )


def build_user_document(
    *,
    event_counts: Mapping[str, int],
    total_users: int,
    active_users: int,
    role_counts: Mapping[str, int],
    logins_per_user: Mapping[str, int],
    session_values: list[Any],
    engagement: Mapping[str, tuple[int, int]],
    resolution_samples: list[float],
    channel_counts: Mapping[tuple[str, str | None], int],
) -> dict[str, dict[str, Any]]:
    """Reduce user, engagement and notification groupings into a user document."""
    new_users = event_counts.get(USER_CREATED, 0)
    counts = UserCounts(
        # A user created in this window is registered by its end
        total=max(total_users, new_users),
        active=active_users,
        new=new_users,
    )

    total_logins = sum(logins_per_user.values())
    sessions = numeric_samples(session_values)
    activity = LoginActivity(
        average_logins=safe_average(total_logins, len(logins_per_user)),
        average_session_duration=safe_average(sum(sessions), len(sessions)),
        total_sessions=len(sessions),
        total_logins=total_logins,
    )

    def per_user(event_type: str) -> float:
        users, total = engagement.get(event_type, (0, 0))
        return safe_average(total, users)

    engagement_section = Engagement(
        average_feedback_submissions=per_user(FEEDBACK_CREATED),
        average_comments=per_user(FEEDBACK_COMMENTED),
        average_responses=per_user(FEEDBACK_RESPONDED),
        average_resolution_time=safe_average(sum(resolution_samples), len(resolution_samples)),
    )

    return {
        "counts": counts.model_dump(),
        "by_role": RoleDistribution(**count_by_key(role_counts, ROLES)).model_dump(),
        "activity": activity.model_dump(),
        "engagement": engagement_section.model_dump(),
        "performance": Performance().model_dump(),
        "notifications": build_notification_statistics(channel_counts).model_dump(),
    }


# --- Assemblers -------------------------------------------------------------


class FeedbackMetricsAssembler:
    """Builds and stores the feedback metrics document for one window and scope."""

    def __init__(self, reader: EventStoreReader, metrics: MetricsService):
        self.reader = reader
        self.metrics = metrics

    async def collect(self, window: PeriodWindow, company_id: str | None) -> dict[str, Any]:
        reader = self.reader
        return build_feedback_document(
            event_counts=await reader.count_by_event_type(
                "feedback", FEEDBACK_COUNTED_EVENTS, window, company_id
            ),
            in_progress=(
                await reader.count_by_payload_field(
                    "feedback", FEEDBACK_UPDATED, "status", window, company_id
                )
            ).get("in_progress", 0),
            priority_counts=await reader.count_by_payload_field(
                "feedback", FEEDBACK_CREATED, "priority", window, company_id
            ),
            category_counts=await reader.count_by_payload_field(
                "feedback", FEEDBACK_CREATED, "categoryId", window, company_id
            ),
            response_samples=await reader.paired_durations(
                FEEDBACK_CREATED, FEEDBACK_RESPONDED, window, company_id
            ),
            resolution_samples=await reader.paired_durations(
                FEEDBACK_CREATED, FEEDBACK_RESOLVED, window, company_id
            ),
            satisfaction_values=await reader.payload_values(
                "feedback", FEEDBACK_SATISFACTION, "score", window, company_id
            ),
            escalation_levels=await reader.count_by_payload_field(
                "feedback", FEEDBACK_ESCALATED, "escalationLevel", window, company_id
            ),
            comment_types=await reader.count_by_payload_field(
                "feedback", FEEDBACK_COMMENTED, "commentType", window, company_id
            ),
        )

    async def assemble_and_upsert(
        self, window: PeriodWindow, company_id: str | None = None
    ) -> FeedbackMetrics:
        document = await self.collect(window, company_id)
        row = await self.metrics.upsert_feedback_metrics(window, company_id, document)
        logger.info(
            "Aggregated %s feedback metrics for %s (company=%s, total=%d)",
            window.kind.value,
            window.start.isoformat(),
            company_id or "platform",
            document["counts"]["total"],
        )
        return row


class UserMetricsAssembler:
    """Builds and stores the user metrics document for one window and scope."""

    def __init__(
        self,
        reader: EventStoreReader,
        metrics: MetricsService,
        directory: UserDirectoryClient | None = None,
    ):
        self.reader = reader
        self.metrics = metrics
        self.directory = directory or UserDirectoryClient()

    async def total_users(self, window: PeriodWindow, company_id: str | None) -> int:
        """Registered users at the end of the window.

        Asks the user service first and falls back to counting distinct
        ``user.created`` events before the window end.
        """
        total = await self.directory.count_users(window.end, company_id)
        if total is not None:
            return total
        return await self.reader.count_users_created_before(window.end, company_id)

    async def collect(self, window: PeriodWindow, company_id: str | None) -> dict[str, Any]:
        reader = self.reader
        return build_user_document(
            event_counts=await reader.count_by_event_type(
                "user", (USER_CREATED, USER_LOGIN, USER_ACTIVE), window, company_id
            ),
            total_users=await self.total_users(window, company_id),
            active_users=await reader.count_distinct_users(
                "user", (USER_LOGIN, USER_ACTIVE), window, company_id
            ),
            role_counts=await reader.count_by_payload_field(
                "user", USER_CREATED, "role", window, company_id
            ),
            logins_per_user=await reader.per_user_counts("user", USER_LOGIN, window, company_id),
            session_values=await reader.payload_values(
                "user", USER_LOGIN, "sessionDuration", window, company_id
            ),
            engagement=await reader.engagement_by_event_type(
                "feedback", ENGAGEMENT_EVENTS, window, company_id
            ),
            resolution_samples=await reader.paired_durations(
                FEEDBACK_CREATED, FEEDBACK_RESOLVED, window, company_id
            ),
            channel_counts=await reader.count_by_channel_and_type(
                tuple(NOTIFICATION_EVENTS), window, company_id
            ),
        )

    async def assemble_and_upsert(
        self, window: PeriodWindow, company_id: str | None = None
    ) -> UserMetrics:
        document = await self.collect(window, company_id)
        row = await self.metrics.upsert_user_metrics(window, company_id, document)
        logger.info(
            "Aggregated %s user metrics for %s (company=%s, active=%d)",
            window.kind.value,
            window.start.isoformat(),
            company_id or "platform",
            document["counts"]["active"],
        )
        return row
