"""Port definitions for fetching raw dashboard rows from any source."""

from datetime import datetime
from typing import Protocol, Sequence

from .models import Activity, ChatMessage, StudentEnrollment, StudentMetrics


class ChatAnalyticsRepository(Protocol):
    """Repository interface that adapters can implement for any backend."""

    def fetch_chat_messages(
        self,
        creator_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Sequence[ChatMessage]:
        """Return a creator's chat messages for a period, ascending by time."""

    def fetch_student_metrics(
        self,
        creator_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Sequence[StudentMetrics]:
        """Return raw per-student engagement metrics for a period."""

    def fetch_activities(
        self,
        creator_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Sequence[Activity]:
        """Return student activity events for a period."""

    def fetch_student_enrollments(self, creator_id: str) -> Sequence[StudentEnrollment]:
        """Return every student of a creator with the time they joined."""
