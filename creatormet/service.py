"""Application service orchestrating repositories and pure analytics."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .analytics import (
    MAU_WINDOW,
    calculate_active_users_over_time,
    calculate_cohort_retention,
    calculate_dau,
    calculate_mau,
    calculate_retention_rate,
    calculate_trend,
    cluster_question_records,
    compute_aggregate_engagement,
    compute_chat_volume,
    compute_cost_breakdown,
    compute_engagement_score,
    compute_response_quality,
    pair_questions_with_responses,
    segment_sessions_by_student,
    session_duration_distribution,
    summarize_sessions,
)
from .config import DEFAULT_CONFIG, EngineConfig
from .models import ROLE_ASSISTANT, Session
from .ports import ChatAnalyticsRepository

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_LIMIT = 20


class DashboardAnalyticsService:
    """Facade service that exposes dashboard metrics independent of web frameworks."""

    def __init__(self, repo: ChatAnalyticsRepository, config: EngineConfig = DEFAULT_CONFIG):
        self.repo = repo
        self.config = config

    def get_student_sessions(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        messages = self.repo.fetch_chat_messages(creator_id, start, end)
        sessions_by_student = segment_sessions_by_student(messages, self.config)
        return {
            "period": _period(start, end),
            "students": {
                student_id: [session.to_dict() for session in sessions]
                for student_id, sessions in sessions_by_student.items()
            },
        }

    def get_session_metrics(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        previous_start, previous_end = _previous_period(start, end)

        sessions = self._sessions(creator_id, start, end)
        previous_sessions = self._sessions(creator_id, previous_start, previous_end)
        trend = calculate_trend(len(sessions), len(previous_sessions))
        logger.info(
            "Session metrics for creator %s: %d sessions (previous period %d)",
            creator_id,
            len(sessions),
            len(previous_sessions),
        )

        summary = summarize_sessions(sessions)
        summary["trend"] = trend.direction
        summary["trend_percentage"] = trend.percentage
        return {
            "period": _period(start, end),
            "previous_period": _period(previous_start, previous_end),
            "overview": summary,
            "duration_distribution": session_duration_distribution(sessions),
        }

    def get_popular_questions(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = DEFAULT_QUESTION_LIMIT,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        messages = self.repo.fetch_chat_messages(creator_id, start, end)
        records = pair_questions_with_responses(messages)
        clusters = cluster_question_records(records, self.config)
        logger.info("Clustered %d questions into %d clusters for creator %s", len(records), len(clusters), creator_id)

        ranked = sorted(clusters, key=lambda cluster: cluster.count, reverse=True)
        return {
            "period": _period(start, end),
            "total_questions": len(records),
            "total_clusters": len(clusters),
            "questions": [cluster.to_dict() for cluster in ranked[:limit]],
        }

    def get_cost_breakdown(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        messages = self.repo.fetch_chat_messages(creator_id, start, end)
        assistant_messages = [message for message in messages if message.role == ROLE_ASSISTANT]
        breakdown = compute_cost_breakdown(assistant_messages, self.config, start_date=start, end_date=end)
        if breakdown.skipped_count:
            logger.info(
                "Cost breakdown for creator %s skipped %d unpriced messages", creator_id, breakdown.skipped_count
            )
        result = breakdown.to_dict()
        result["period"] = _period(start, end)
        return result

    def get_engagement(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        metrics = self.repo.fetch_student_metrics(creator_id, start, end)
        return {
            "period": _period(start, end),
            "overall": compute_aggregate_engagement(metrics, self.config).to_dict(),
            "students": [
                dict(student_id=m.student_id, **compute_engagement_score(m, self.config).to_dict())
                for m in metrics
            ],
        }

    def get_chat_volume(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        messages = self.repo.fetch_chat_messages(creator_id, start, end)
        return {"period": _period(start, end), "volume": compute_chat_volume(messages, self.config)}

    def get_response_quality(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        messages = self.repo.fetch_chat_messages(creator_id, start, end)
        return {"period": _period(start, end), "quality": compute_response_quality(messages)}

    def get_active_users(
        self,
        creator_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = _normalize_period(start_date, end_date)
        # MAU of the first day looks back a further 30 days.
        activities = self.repo.fetch_activities(creator_id, start - MAU_WINDOW, end)
        days = (end.date() - start.date()).days + 1
        return {
            "period": _period(start, end),
            "dau": calculate_dau(activities, end),
            "mau": calculate_mau(activities, end),
            "active_users": calculate_active_users_over_time(activities, days, end, self.config),
        }

    def get_retention(self, creator_id: str, as_of: Optional[datetime] = None) -> Dict:
        if as_of is None:
            as_of = datetime.now(timezone.utc)
        enrollments = self.repo.fetch_student_enrollments(creator_id)
        if not enrollments:
            return {"retention_rate": 0, "cohorts": []}

        first_join = min(enrollment.joined_at for enrollment in enrollments)
        activities = self.repo.fetch_activities(creator_id, first_join, as_of)
        cohorts = calculate_cohort_retention(enrollments, activities, config=self.config)
        logger.info("Retention for creator %s: %d cohorts, %d students", creator_id, len(cohorts), len(enrollments))
        return {
            "retention_rate": calculate_retention_rate(cohorts),
            "cohorts": [cohort.to_dict() for cohort in cohorts],
        }

    def _sessions(self, creator_id: str, start: datetime, end: datetime) -> List[Session]:
        messages = self.repo.fetch_chat_messages(creator_id, start, end)
        sessions_by_student = segment_sessions_by_student(messages, self.config)
        return [session for sessions in sessions_by_student.values() for session in sessions]


def _normalize_period(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> tuple[datetime, datetime]:
    if end_date is None:
        end_date = datetime.now(timezone.utc)
    if start_date is None:
        start_date = end_date - timedelta(days=7)
    return start_date, end_date


def _previous_period(start_date: datetime, end_date: datetime) -> tuple[datetime, datetime]:
    length = end_date - start_date
    return start_date - length, start_date - timedelta(microseconds=1)


def _period(start_date: datetime, end_date: datetime) -> Dict:
    return {"start": start_date.isoformat(), "end": end_date.isoformat()}
