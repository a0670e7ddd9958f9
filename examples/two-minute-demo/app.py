"""Two-minute creatormet demo: FastAPI backend over generated chat data."""

from datetime import datetime, timedelta, timezone
from random import Random
from typing import Optional

from fastapi import FastAPI, HTTPException

from creatormet.analytics import calculate_trend
from creatormet.config import CAPABLE_MODEL, FAST_MODEL, config_from_env
from creatormet.errors import NegativeBaselineError
from creatormet.models import ROLE_ASSISTANT, ROLE_STUDENT, Activity, ChatMessage, StudentEnrollment, StudentMetrics
from creatormet.service import DashboardAnalyticsService

RNG = Random(42)
DEMO_CREATOR = "demo-creator"
QUESTIONS = [
    "How do I start?",
    "How can I start?",
    "What is trading?",
    "What is a stop loss?",
    "Where is the quiz?",
    "where is the quiz",
    "How do I reset my password?",
]

app = FastAPI(title="creatormet Two-Minute Demo", version="0.1.0")


class InMemoryRepository:
    """Serves generated rows the way a datastore adapter would."""

    def __init__(self, messages, metrics, enrollments):
        self.messages = sorted(messages, key=lambda message: message.created_at)
        self.metrics = metrics
        self.enrollments = enrollments

    def fetch_chat_messages(self, creator_id, start_date, end_date):
        return [
            message
            for message in self.messages
            if message.creator_id == creator_id and start_date <= message.created_at <= end_date
        ]

    def fetch_student_metrics(self, creator_id, start_date, end_date):
        return self.metrics

    def fetch_activities(self, creator_id, start_date, end_date):
        return [
            Activity(student_id=message.student_id, timestamp=message.created_at)
            for message in self.fetch_chat_messages(creator_id, start_date, end_date)
            if message.role == ROLE_STUDENT
        ]

    def fetch_student_enrollments(self, creator_id):
        return self.enrollments if creator_id == DEMO_CREATOR else []


def _build_demo_data() -> InMemoryRepository:
    now = datetime.now(timezone.utc)

    messages = []
    for student_idx in range(12):
        student_id = f"student-{student_idx}"
        at = now - timedelta(days=RNG.randint(0, 13), hours=RNG.randint(0, 20))
        for turn in range(RNG.randint(1, 6)):
            question_id = f"{student_id}-q{turn}"
            messages.append(
                ChatMessage(
                    message_id=question_id,
                    student_id=student_id,
                    creator_id=DEMO_CREATOR,
                    role=ROLE_STUDENT,
                    content=RNG.choice(QUESTIONS),
                    created_at=at,
                )
            )
            at += timedelta(seconds=RNG.randint(2, 12))
            if RNG.random() < 0.85:
                messages.append(
                    ChatMessage(
                        message_id=f"{question_id}-answer",
                        student_id=student_id,
                        creator_id=DEMO_CREATOR,
                        role=ROLE_ASSISTANT,
                        content=f"Great question, see video_id: lesson-{RNG.randint(1, 5)}",
                        created_at=at,
                        input_tokens=max(100, int(RNG.gauss(1500, 300))),
                        output_tokens=max(50, int(RNG.gauss(600, 150))),
                        model=FAST_MODEL if RNG.random() < 0.8 else CAPABLE_MODEL,
                        response_time_ms=max(300, int(RNG.gauss(1800, 400))),
                    )
                )
            # 45 and 90 minute gaps open a new session.
            at += timedelta(minutes=RNG.choice([2, 5, 10, 45, 90]))

    metrics = [
        StudentMetrics(
            student_id=f"student-{idx}",
            video_completion_rate=round(RNG.uniform(10, 100), 1),
            chat_interaction_frequency=round(RNG.uniform(0, 12), 1),
            login_frequency=round(RNG.uniform(0, 8), 1),
            course_progress_rate=round(RNG.uniform(0, 100), 1),
        )
        for idx in range(12)
    ]
    enrollments = [
        StudentEnrollment(student_id=f"student-{idx}", joined_at=now - timedelta(days=RNG.randint(14, 60)))
        for idx in range(12)
    ]
    return InMemoryRepository(messages, metrics, enrollments)


SERVICE = DashboardAnalyticsService(_build_demo_data(), config_from_env())


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "demo": "creatormet-two-minute"}


@app.get("/api/sessions")
def sessions(days: int = 7) -> dict:
    return SERVICE.get_session_metrics(DEMO_CREATOR, *_period(days))


@app.get("/api/sessions/students")
def student_sessions(days: int = 7) -> dict:
    return SERVICE.get_student_sessions(DEMO_CREATOR, *_period(days))


@app.get("/api/questions")
def popular_questions(days: int = 7, limit: int = 20) -> dict:
    return SERVICE.get_popular_questions(DEMO_CREATOR, *_period(days), limit=limit)


@app.get("/api/cost")
def cost(days: int = 7) -> dict:
    return SERVICE.get_cost_breakdown(DEMO_CREATOR, *_period(days))


@app.get("/api/engagement")
def engagement(days: int = 7) -> dict:
    return SERVICE.get_engagement(DEMO_CREATOR, *_period(days))


@app.get("/api/volume")
def volume(days: int = 7) -> dict:
    return SERVICE.get_chat_volume(DEMO_CREATOR, *_period(days))


@app.get("/api/quality")
def quality(days: int = 7) -> dict:
    return SERVICE.get_response_quality(DEMO_CREATOR, *_period(days))


@app.get("/api/active-users")
def active_users(days: int = 7) -> dict:
    return SERVICE.get_active_users(DEMO_CREATOR, *_period(days))


@app.get("/api/retention")
def retention() -> dict:
    return SERVICE.get_retention(DEMO_CREATOR)


@app.get("/api/trend")
def trend(current: float, previous: float, cap: Optional[float] = 999.0) -> dict:
    try:
        result = calculate_trend(current, previous)
    except NegativeBaselineError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    percentage = result.percentage
    if cap is not None:
        percentage = max(-cap, min(cap, percentage))
    return {"direction": result.direction, "percentage": percentage}


def _period(days: int) -> tuple[datetime, datetime]:
    end = datetime.now(timezone.utc)
    return end - timedelta(days=days), end
