"""Core domain models used by the analytics engine."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, NamedTuple, Optional, Sequence

ROLE_STUDENT = "student"
ROLE_ASSISTANT = "assistant"

TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"


@dataclass(frozen=True)
class ChatMessage:
    """A single turn in a student/assistant conversation."""

    message_id: str
    student_id: str
    creator_id: str
    role: str
    content: str
    created_at: datetime
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    model: Optional[str] = None
    response_time_ms: Optional[float] = None
    has_video_reference: Optional[bool] = None
    video_references: Sequence[str] = ()
    cost_usd: Optional[float] = None

    @property
    def is_assistant(self) -> bool:
        return self.role == ROLE_ASSISTANT

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT


@dataclass(frozen=True)
class Session:
    """Contiguous run of one student's messages."""

    messages: Sequence[ChatMessage]
    start_time: datetime
    end_time: datetime
    duration: timedelta
    message_count: int
    completed: bool

    @classmethod
    def from_messages(cls, messages: Sequence[ChatMessage]) -> "Session":
        messages = tuple(messages)
        if not messages:
            raise ValueError("a session needs at least one message")
        start_time = messages[0].created_at
        end_time = messages[-1].created_at
        return cls(
            messages=messages,
            start_time=start_time,
            end_time=end_time,
            duration=end_time - start_time,
            message_count=len(messages),
            completed=messages[-1].is_assistant,
        )

    @property
    def student_id(self) -> str:
        return self.messages[0].student_id

    @property
    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60

    def to_dict(self) -> Dict:
        return {
            "id": f"session-{int(self.start_time.timestamp() * 1000)}",
            "student_id": self.student_id,
            "message_ids": [message.message_id for message in self.messages],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": int(self.duration.total_seconds() * 1000),
            "message_count": self.message_count,
            "completed": self.completed,
        }


@dataclass(frozen=True)
class QuestionRecord:
    """A student question with data taken from the assistant reply to it."""

    text: str
    response_time_ms: Optional[float] = None
    cited_video_ids: Sequence[str] = ()


@dataclass(frozen=True)
class QuestionCluster:
    """Group of near-duplicate student questions."""

    representative: str
    variations: Sequence[str]
    count: int
    avg_response_time_ms: float
    cited_video_ids: Sequence[str]

    def to_dict(self) -> Dict:
        return {
            "representative": self.representative,
            "variations": list(self.variations),
            "count": self.count,
            "avg_response_time_ms": self.avg_response_time_ms,
            "cited_video_ids": list(self.cited_video_ids),
        }


@dataclass(frozen=True)
class CostBreakdown:
    """AI spend over a batch of assistant messages."""

    total: float
    by_model: Dict[str, float]
    by_date: Dict[str, float]
    per_message: float
    per_student: float
    message_count: int
    student_count: int
    skipped_count: int

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "by_model": dict(self.by_model),
            "by_date": [{"date": date, "cost": cost} for date, cost in self.by_date.items()],
            "per_message": self.per_message,
            "per_student": self.per_student,
            "message_count": self.message_count,
            "student_count": self.student_count,
            "skipped_count": self.skipped_count,
        }


@dataclass(frozen=True)
class StudentMetrics:
    """Raw engagement inputs for one student, computed upstream."""

    video_completion_rate: float
    chat_interaction_frequency: float
    login_frequency: float
    course_progress_rate: float
    student_id: Optional[str] = None


@dataclass(frozen=True)
class Activity:
    """Something a student did at a point in time (a chat message, a video view)."""

    student_id: str
    timestamp: datetime


@dataclass(frozen=True)
class StudentEnrollment:
    student_id: str
    joined_at: datetime


@dataclass(frozen=True)
class CohortRetention:
    """Weekly retention of the students who joined in the same week."""

    cohort_start: datetime
    size: int
    # Index 0 is the joining week; values are percentages 0-100.
    retention_by_week: Sequence[int]

    def to_dict(self) -> Dict:
        payload = {
            "cohort": f"Week of {self.cohort_start:%b} {self.cohort_start.day}",
            "cohort_start": self.cohort_start.isoformat(),
            "size": self.size,
        }
        for week, rate in enumerate(self.retention_by_week):
            payload[f"week{week}"] = rate
        return payload


@dataclass(frozen=True)
class EngagementBreakdown:
    video_completion: int
    chat_interaction: int
    course_progress: int
    login_frequency: int

    @property
    def total(self) -> int:
        return self.video_completion + self.chat_interaction + self.course_progress + self.login_frequency


@dataclass(frozen=True)
class EngagementScore:
    """Composite 0-100 engagement score and its sub-scores."""

    total: int
    breakdown: EngagementBreakdown = field(default_factory=lambda: EngagementBreakdown(0, 0, 0, 0))

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "breakdown": {
                "video_completion": self.breakdown.video_completion,
                "chat_interaction": self.breakdown.chat_interaction,
                "course_progress": self.breakdown.course_progress,
                "login_frequency": self.breakdown.login_frequency,
            },
        }


class Trend(NamedTuple):
    """Period-over-period change of one scalar metric."""

    direction: str
    percentage: float
