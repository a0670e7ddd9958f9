"""SQLAlchemy repository adapter for creatormet."""

import json
import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.orm import Session

from ..models import ROLE_ASSISTANT, ROLE_STUDENT, Activity, ChatMessage, StudentEnrollment, StudentMetrics

logger = logging.getLogger(__name__)

# Roles stored by the chat UI mapped onto the engine's roles.
_ROLE_ALIASES = {"user": ROLE_STUDENT, ROLE_STUDENT: ROLE_STUDENT, ROLE_ASSISTANT: ROLE_ASSISTANT}

_CHAT_MESSAGES_QUERY = (
    text(
        """
        SELECT m.id, s.student_id, s.creator_id, m.role, m.content, m.created_at,
               m.input_tokens, m.output_tokens, m.model, m.cost_usd,
               m.response_time_ms, m.video_references
        FROM chat_messages m
        JOIN chat_sessions s ON s.id = m.session_id
        WHERE s.creator_id = :creator_id
          AND m.role IN ('user', 'student', 'assistant')
          AND m.created_at >= :start_date
          AND m.created_at <= :end_date
        ORDER BY m.created_at ASC, m.id ASC
        """
    )
    .bindparams(bindparam("start_date", type_=DateTime()), bindparam("end_date", type_=DateTime()))
    .columns(created_at=DateTime())
)

_STUDENT_METRICS_QUERY = text(
    """
    SELECT student_id, video_completion_rate, chat_messages_per_day,
           logins_per_week, course_progress_rate
    FROM student_engagement_metrics
    WHERE creator_id = :creator_id
      AND period_end >= :start_date
      AND period_end <= :end_date
    ORDER BY student_id ASC
    """
).bindparams(bindparam("start_date", type_=DateTime()), bindparam("end_date", type_=DateTime()))


_ACTIVITIES_QUERY = (
    text(
        """
        SELECT s.student_id, m.created_at AS occurred_at
        FROM chat_messages m
        JOIN chat_sessions s ON s.id = m.session_id
        WHERE s.creator_id = :creator_id
          AND m.role IN ('user', 'student')
          AND m.created_at >= :start_date
          AND m.created_at <= :end_date
        ORDER BY m.created_at ASC
        """
    )
    .bindparams(bindparam("start_date", type_=DateTime()), bindparam("end_date", type_=DateTime()))
    .columns(occurred_at=DateTime())
)

_ENROLLMENTS_QUERY = text(
    """
    SELECT id, created_at
    FROM students
    WHERE creator_id = :creator_id
    ORDER BY created_at ASC, id ASC
    """
).columns(created_at=DateTime())

class SQLAlchemyChatAnalyticsRepository:
    """Fetches raw chat and engagement rows and maps them to domain models."""

    def __init__(self, db: Session):
        self.db = db

    def fetch_chat_messages(
        self,
        creator_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Sequence[ChatMessage]:
        rows = self.db.execute(
            _CHAT_MESSAGES_QUERY,
            {"creator_id": creator_id, "start_date": start_date, "end_date": end_date},
        ).fetchall()

        return [
            ChatMessage(
                message_id=str(row.id),
                student_id=str(row.student_id),
                creator_id=str(row.creator_id),
                role=_ROLE_ALIASES[row.role],
                content=row.content or "",
                created_at=row.created_at,
                input_tokens=_optional_int(row.input_tokens),
                output_tokens=_optional_int(row.output_tokens),
                model=row.model,
                response_time_ms=_optional_float(row.response_time_ms),
                video_references=tuple(_parse_video_references(row.video_references)),
                cost_usd=_optional_float(row.cost_usd),
            )
            for row in rows
        ]

    def fetch_student_metrics(
        self,
        creator_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Sequence[StudentMetrics]:
        rows = self.db.execute(
            _STUDENT_METRICS_QUERY,
            {"creator_id": creator_id, "start_date": start_date, "end_date": end_date},
        ).fetchall()

        return [
            StudentMetrics(
                student_id=str(row.student_id),
                video_completion_rate=float(row.video_completion_rate or 0),
                chat_interaction_frequency=float(row.chat_messages_per_day or 0),
                login_frequency=float(row.logins_per_week or 0),
                course_progress_rate=float(row.course_progress_rate or 0),
            )
            for row in rows
        ]

    def fetch_activities(
        self,
        creator_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Sequence[Activity]:
        rows = self.db.execute(
            _ACTIVITIES_QUERY,
            {"creator_id": creator_id, "start_date": start_date, "end_date": end_date},
        ).fetchall()
        return [Activity(student_id=str(row.student_id), timestamp=row.occurred_at) for row in rows]

    def fetch_student_enrollments(self, creator_id: str) -> Sequence[StudentEnrollment]:
        rows = self.db.execute(_ENROLLMENTS_QUERY, {"creator_id": creator_id}).fetchall()
        return [StudentEnrollment(student_id=str(row.id), joined_at=row.created_at) for row in rows]


def _parse_video_references(raw_references) -> list[str]:
    if raw_references is None:
        return []
    if isinstance(raw_references, str):
        try:
            raw_references = json.loads(raw_references)
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed video_references value %r", raw_references)
            return []
    if not isinstance(raw_references, list):
        return []

    video_ids = []
    for reference in raw_references:
        if isinstance(reference, dict):
            reference = reference.get("video_id")
        if reference:
            video_ids.append(str(reference))
    return video_ids


def _optional_int(value) -> Optional[int]:
    return int(value) if value is not None else None


def _optional_float(value) -> Optional[float]:
    return float(value) if value is not None else None
