"""Pure analytics functions that turn raw chat and engagement records into dashboard metrics."""

import logging
import math
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_CONFIG, EngagementWeights, EngineConfig
from .errors import MixedStudentError, NegativeBaselineError
from .models import (
    TREND_DOWN,
    TREND_STABLE,
    TREND_UP,
    Activity,
    ChatMessage,
    CohortRetention,
    CostBreakdown,
    EngagementBreakdown,
    EngagementScore,
    QuestionCluster,
    QuestionRecord,
    Session,
    StudentEnrollment,
    StudentMetrics,
    Trend,
)
from .text import normalize_question, similarity

logger = logging.getLogger(__name__)

SESSION_DURATION_BUCKETS = (
    ("0-5m", 0, 5),
    ("5-15m", 5, 15),
    ("15-30m", 15, 30),
    ("30-60m", 30, 60),
    ("60m+", 60, math.inf),
)

DAU_WINDOW = timedelta(hours=24)
MAU_WINDOW = timedelta(days=30)
RETENTION_WEEKS = 12

_CITATION_PATTERNS = (
    re.compile(r"\[Video:", re.IGNORECASE),
    re.compile(r"\[Timestamp:", re.IGNORECASE),
    re.compile(r"\[@\d+:\d+\]"),
    re.compile(r"video_id:", re.IGNORECASE),
)
_VIDEO_ID_PATTERN = re.compile(r"video[_-]id:\s*([a-zA-Z0-9-]+)", re.IGNORECASE)


# Sessions


def segment_sessions(
    messages: Iterable[ChatMessage],
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[Session]:
    """
    Split one student's time-ordered messages into sessions.

    A new session starts whenever the gap to the previous message is strictly
    greater than ``config.session_gap``. Ordering is not checked; callers sort
    ascending by ``created_at`` first.

    Raises:
        MixedStudentError: if the messages belong to more than one student.
    """
    messages_list = list(messages)
    if not messages_list:
        return []

    student_ids = {message.student_id for message in messages_list}
    if len(student_ids) > 1:
        raise MixedStudentError(
            f"segment_sessions expects one student's messages, got {len(student_ids)}: {sorted(student_ids)}"
        )

    sessions: List[Session] = []
    current = [messages_list[0]]
    for message in messages_list[1:]:
        gap = message.created_at - current[-1].created_at
        if gap > config.session_gap:
            sessions.append(Session.from_messages(current))
            current = [message]
        else:
            current.append(message)
    sessions.append(Session.from_messages(current))
    return sessions


def group_messages_by_student(messages: Iterable[ChatMessage]) -> Dict[str, List[ChatMessage]]:
    """Group messages per student, each group sorted ascending by time (stable)."""
    grouped: Dict[str, List[ChatMessage]] = {}
    for message in messages:
        grouped.setdefault(message.student_id, []).append(message)
    for student_messages in grouped.values():
        student_messages.sort(key=lambda message: message.created_at)
    return grouped


def segment_sessions_by_student(
    messages: Iterable[ChatMessage],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Dict[str, List[Session]]:
    """Group a mixed message batch by student and segment each group."""
    return {
        student_id: segment_sessions(student_messages, config)
        for student_id, student_messages in group_messages_by_student(messages).items()
    }


def summarize_sessions(sessions: Iterable[Session]) -> Dict:
    """Compute headline session metrics."""
    sessions_list = list(sessions)
    if not sessions_list:
        return empty_session_summary()

    total_sessions = len(sessions_list)
    return {
        "total_sessions": total_sessions,
        "avg_messages_per_session": sum(session.message_count for session in sessions_list) / total_sessions,
        "avg_session_duration_minutes": sum(session.duration_minutes for session in sessions_list) / total_sessions,
        "completion_rate": sum(1 for session in sessions_list if session.completed) / total_sessions,
    }


def empty_session_summary() -> Dict:
    """Return empty session summary structure."""
    return {
        "total_sessions": 0,
        "avg_messages_per_session": 0.0,
        "avg_session_duration_minutes": 0.0,
        "completion_rate": 0.0,
    }


def session_duration_distribution(sessions: Iterable[Session]) -> List[Dict]:
    """Count sessions per duration bucket; lower bounds are inclusive."""
    counts = {label: 0 for label, _, _ in SESSION_DURATION_BUCKETS}
    for session in sessions:
        minutes = session.duration_minutes
        for label, lower, upper in SESSION_DURATION_BUCKETS:
            if lower <= minutes < upper:
                counts[label] += 1
                break
    return [{"bucket": label, "count": count} for label, count in counts.items()]


# Question clustering


class _ClusterBuilder:
    """Mutable accumulator for one cluster while the clusterer runs."""

    def __init__(self, record: QuestionRecord, normalized: str):
        self.representative = record.text
        self.normalized = normalized
        self.variations: List[str] = []
        self._seen_texts = {record.text}
        self.count = 0
        self.response_times: List[float] = []
        self.video_ids: Dict[str, None] = {}
        self.add(record)

    def add(self, record: QuestionRecord) -> None:
        if record.text not in self._seen_texts:
            self._seen_texts.add(record.text)
            self.variations.append(record.text)
        self.count += 1
        if record.response_time_ms is not None:
            self.response_times.append(float(record.response_time_ms))
        for video_id in record.cited_video_ids:
            self.video_ids.setdefault(video_id, None)

    def build(self) -> QuestionCluster:
        avg_response_time = sum(self.response_times) / len(self.response_times) if self.response_times else 0.0
        return QuestionCluster(
            representative=self.representative,
            variations=tuple(self.variations),
            count=self.count,
            avg_response_time_ms=avg_response_time,
            cited_video_ids=tuple(self.video_ids),
        )


def cluster_question_records(
    records: Iterable[QuestionRecord],
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[QuestionCluster]:
    """
    Greedy single-pass clustering of near-duplicate questions.

    Each question is compared only against the normalized representative of
    the clusters created so far; the first cluster reaching
    ``config.similarity_threshold`` takes it, otherwise it opens a new
    cluster. The result depends on input order and is returned in the order
    representatives were first seen.
    """
    builders: List[_ClusterBuilder] = []
    for record in records:
        normalized = normalize_question(record.text)
        for builder in builders:
            if similarity(normalized, builder.normalized) >= config.similarity_threshold:
                builder.add(record)
                break
        else:
            builders.append(_ClusterBuilder(record, normalized))

    return [builder.build() for builder in builders]


def cluster_questions(
    questions: Iterable[str],
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[QuestionCluster]:
    """Cluster bare question strings."""
    return cluster_question_records((QuestionRecord(text=question) for question in questions), config)


def pair_questions_with_responses(messages: Iterable[ChatMessage]) -> List[QuestionRecord]:
    """
    Turn student messages into question records.

    A question takes its response time and cited videos from the assistant
    message that directly follows it in the same student's stream. Records
    keep the input order of the student messages.
    """
    messages_list = list(messages)
    replies: Dict[str, ChatMessage] = {}
    for student_messages in group_messages_by_student(messages_list).values():
        for current, following in zip(student_messages, student_messages[1:]):
            if current.is_student and following.is_assistant:
                replies[current.message_id] = following

    records = []
    for message in messages_list:
        if not message.is_student:
            continue
        reply = replies.get(message.message_id)
        records.append(
            QuestionRecord(
                text=message.content.strip(),
                response_time_ms=reply.response_time_ms if reply else None,
                cited_video_ids=tuple(extract_video_references(reply)) if reply else (),
            )
        )
    return records


# Cost


def message_cost(message: ChatMessage, config: EngineConfig = DEFAULT_CONFIG) -> Optional[float]:
    """
    Return the USD cost of one message, or None when it cannot be priced.

    Only models in ``config.price_table`` are priced; a stored ``cost_usd``
    then takes precedence over token pricing.
    """
    pricing = config.price_table.get(message.model) if message.model else None
    if pricing is None:
        return None
    if message.cost_usd is not None:
        return float(message.cost_usd)
    if message.input_tokens is None or message.output_tokens is None:
        return None

    return (
        message.input_tokens * pricing.input_per_million + message.output_tokens * pricing.output_per_million
    ) / 1_000_000


def compute_cost_breakdown(
    messages: Iterable[ChatMessage],
    config: EngineConfig = DEFAULT_CONFIG,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> CostBreakdown:
    """
    Compute AI spend from assistant messages.

    Messages with an unknown model or missing token counts are skipped.
    Dates are bucketed in ``config.cost_timezone``; when both window bounds
    are given, messages outside the window are dropped and every date inside
    it is present in ``by_date``.
    """
    tz = config.cost_timezone
    messages_list = list(messages)
    if start_date is not None:
        window_start = _in_timezone(start_date, tz)
        messages_list = [m for m in messages_list if _in_timezone(m.created_at, tz) >= window_start]
    if end_date is not None:
        window_end = _in_timezone(end_date, tz)
        messages_list = [m for m in messages_list if _in_timezone(m.created_at, tz) <= window_end]

    date_totals: Dict[str, float] = {}
    if start_date is not None and end_date is not None:
        for day in _date_range(_in_timezone(start_date, tz).date(), _in_timezone(end_date, tz).date()):
            date_totals[day.isoformat()] = 0.0

    total = 0.0
    by_model: Dict[str, float] = {}
    skipped_count = 0
    for message in messages_list:
        cost = message_cost(message, config)
        if cost is None:
            skipped_count += 1
            logger.debug(
                "Skipping message %s in cost totals (model=%r, input_tokens=%r, output_tokens=%r)",
                message.message_id,
                message.model,
                message.input_tokens,
                message.output_tokens,
            )
            continue

        total += cost
        model = message.model
        by_model[model] = by_model.get(model, 0.0) + cost
        day_key = _in_timezone(message.created_at, tz).date().isoformat()
        date_totals[day_key] = date_totals.get(day_key, 0.0) + cost

    message_count = len(messages_list)
    student_count = len({message.student_id for message in messages_list})
    return CostBreakdown(
        total=total,
        by_model=by_model,
        by_date={day: date_totals[day] for day in sorted(date_totals)},
        per_message=total / message_count if message_count > 0 else 0.0,
        per_student=total / student_count if student_count > 0 else 0.0,
        message_count=message_count,
        student_count=student_count,
        skipped_count=skipped_count,
    )


# Engagement


def score_normalized_engagement(
    video_completion: float,
    chat_interaction: float,
    course_progress: float,
    login_frequency: float,
    weights: EngagementWeights = EngagementWeights(),
) -> EngagementScore:
    """
    Score already-normalized (0-1) engagement inputs.

    Out-of-range inputs are clamped; each sub-score is rounded on its own and
    the total is their exact sum.
    """
    breakdown = EngagementBreakdown(
        video_completion=_weighted_points(video_completion, weights.video_completion),
        chat_interaction=_weighted_points(chat_interaction, weights.chat_interaction),
        course_progress=_weighted_points(course_progress, weights.course_progress),
        login_frequency=_weighted_points(login_frequency, weights.login_frequency),
    )
    return EngagementScore(total=breakdown.total, breakdown=breakdown)


def compute_engagement_score(
    metrics: StudentMetrics,
    config: EngineConfig = DEFAULT_CONFIG,
) -> EngagementScore:
    """Score raw metrics using the default normalization from ``config``."""
    return score_normalized_engagement(
        video_completion=metrics.video_completion_rate / 100,
        chat_interaction=_ratio(metrics.chat_interaction_frequency, config.chat_messages_per_day_target),
        course_progress=metrics.course_progress_rate / 100,
        login_frequency=_ratio(metrics.login_frequency, config.logins_per_week_target),
        weights=config.engagement_weights,
    )


def compute_aggregate_engagement(
    metrics: Iterable[StudentMetrics],
    config: EngineConfig = DEFAULT_CONFIG,
) -> EngagementScore:
    """Score a creator's student population from the mean of each raw metric."""
    metrics_list = list(metrics)
    if not metrics_list:
        return EngagementScore(total=0)

    count = len(metrics_list)
    averaged = StudentMetrics(
        video_completion_rate=math.fsum(m.video_completion_rate for m in metrics_list) / count,
        chat_interaction_frequency=math.fsum(m.chat_interaction_frequency for m in metrics_list) / count,
        login_frequency=math.fsum(m.login_frequency for m in metrics_list) / count,
        course_progress_rate=math.fsum(m.course_progress_rate for m in metrics_list) / count,
    )
    return compute_engagement_score(averaged, config)


# Active users and retention


def calculate_dau(activities: Iterable[Activity], as_of: datetime) -> int:
    """Distinct students active in the 24 hours up to ``as_of`` (both ends inclusive)."""
    return _active_students(activities, as_of - DAU_WINDOW, as_of)


def calculate_mau(activities: Iterable[Activity], as_of: datetime) -> int:
    """Distinct students active in the 30 days up to ``as_of`` (both ends inclusive)."""
    return _active_students(activities, as_of - MAU_WINDOW, as_of)


def group_activities_by_date(
    activities: Iterable[Activity],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Dict[str, List[Activity]]:
    """Activities keyed by ISO calendar date, ascending."""
    grouped: Dict[str, List[Activity]] = {}
    for activity in activities:
        day_key = _in_timezone(activity.timestamp, config.cost_timezone).date().isoformat()
        grouped.setdefault(day_key, []).append(activity)
    return {day_key: grouped[day_key] for day_key in sorted(grouped)}


def calculate_active_users_over_time(
    activities: Iterable[Activity],
    days: int,
    as_of: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[Dict]:
    """
    Daily active users for the ``days`` calendar dates ending on ``as_of``.

    Each entry carries the date, its DAU, the MAU of the 30 days ending at the
    same time of day, and the whole-number percentage change of DAU against
    the previous date (growth from zero counts as +100).
    """
    activities_list = list(activities)
    by_date = group_activities_by_date(activities_list, config)
    as_of_local = _in_timezone(as_of, config.cost_timezone)

    series = []
    for offset in range(days - 1, -1, -1):
        moment = as_of_local - timedelta(days=offset)
        day = moment.date()
        dau = _distinct_students(by_date.get(day.isoformat(), []))
        previous_dau = _distinct_students(by_date.get((day - timedelta(days=1)).isoformat(), []))
        series.append(
            {
                "date": day.isoformat(),
                "dau": dau,
                "mau": calculate_mau(activities_list, moment),
                "change": _round_half_up(calculate_trend(dau, previous_dau).percentage),
            }
        )
    return series


def calculate_cohort_retention(
    enrollments: Iterable[StudentEnrollment],
    activities: Iterable[Activity],
    weeks: int = RETENTION_WEEKS,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[CohortRetention]:
    """
    Weekly retention matrix for students grouped by the week (Monday start) they joined.

    Week ``n`` covers ``[start + n weeks, start + n + 1 weeks)`` where ``start``
    is the earliest join time in the cohort. Week 0 is always 100; a student
    counts as retained in a later week if they have any activity in it.
    """
    tz = config.cost_timezone
    cohorts: Dict[date, Dict[str, datetime]] = {}
    for enrollment in enrollments:
        joined_at = _in_timezone(enrollment.joined_at, tz)
        week_start = joined_at.date() - timedelta(days=joined_at.weekday())
        members = cohorts.setdefault(week_start, {})
        if enrollment.student_id not in members or joined_at < members[enrollment.student_id]:
            members[enrollment.student_id] = joined_at

    activity_times: Dict[str, List[datetime]] = {}
    for activity in activities:
        activity_times.setdefault(activity.student_id, []).append(_in_timezone(activity.timestamp, tz))

    return [_cohort_retention(cohorts[week_start], activity_times, weeks) for week_start in sorted(cohorts)]


def calculate_retention_rate(cohorts: Iterable[CohortRetention]) -> int:
    """Mean over cohorts of each cohort's mean weekly retention, rounded; 0 without data."""
    averages = [
        math.fsum(cohort.retention_by_week) / len(cohort.retention_by_week)
        for cohort in cohorts
        if cohort.retention_by_week
    ]
    if not averages:
        return 0
    return _round_half_up(math.fsum(averages) / len(averages))


def _cohort_retention(
    members: Dict[str, datetime],
    activity_times: Dict[str, List[datetime]],
    weeks: int,
) -> CohortRetention:
    cohort_start = min(members.values())
    size = len(members)
    retention = [100]
    for week in range(1, weeks + 1):
        week_start = cohort_start + timedelta(weeks=week)
        week_end = week_start + timedelta(weeks=1)
        retained = sum(
            1
            for student_id in members
            if any(week_start <= at < week_end for at in activity_times.get(student_id, ()))
        )
        retention.append(_round_half_up(retained / size * 100))
    return CohortRetention(cohort_start=cohort_start, size=size, retention_by_week=tuple(retention))


def _active_students(activities: Iterable[Activity], window_start: datetime, window_end: datetime) -> int:
    window_start = _in_timezone(window_start, timezone.utc)
    window_end = _in_timezone(window_end, timezone.utc)
    return _distinct_students(
        activity
        for activity in activities
        if window_start <= _in_timezone(activity.timestamp, timezone.utc) <= window_end
    )


def _distinct_students(activities: Iterable[Activity]) -> int:
    return len({activity.student_id for activity in activities})


# Trends


def calculate_trend(current: float, previous: float) -> Trend:
    """
    Signed percentage change from ``previous`` to ``current``.

    The value is not capped. Growth from zero counts as +100%.

    Raises:
        NegativeBaselineError: if ``previous`` is negative.
    """
    if previous < 0:
        raise NegativeBaselineError(f"previous value must be non-negative, got {previous}")

    if current == previous:
        return Trend(TREND_STABLE, 0.0)
    if previous == 0:
        return Trend(TREND_UP, 100.0) if current > 0 else Trend(TREND_DOWN, -100.0)

    percentage = (current - previous) / previous * 100
    return Trend(TREND_UP if current > previous else TREND_DOWN, percentage)


# Chat content metrics


def has_video_reference(message: ChatMessage) -> bool:
    """Whether an assistant message cites a video."""
    if message.has_video_reference is not None:
        return message.has_video_reference
    if message.video_references:
        return True
    return any(pattern.search(message.content) for pattern in _CITATION_PATTERNS)


def extract_video_references(message: ChatMessage) -> List[str]:
    """Video ids cited by a message, from its explicit list or its text."""
    if message.video_references:
        return list(dict.fromkeys(message.video_references))
    return list(dict.fromkeys(_VIDEO_ID_PATTERN.findall(message.content)))


def compute_response_quality(messages: Iterable[ChatMessage]) -> Dict:
    """Average answer length, citation rate and follow-up rate of assistant replies."""
    messages_list = list(messages)
    assistant_messages = [message for message in messages_list if message.is_assistant]
    if not assistant_messages:
        return empty_response_quality()

    assistant_count = len(assistant_messages)
    avg_length = sum(len(message.content.split()) for message in assistant_messages) / assistant_count
    citation_count = sum(1 for message in assistant_messages if has_video_reference(message))

    follow_ups = 0
    for student_messages in group_messages_by_student(messages_list).values():
        follow_ups += sum(
            1
            for current, following in zip(student_messages, student_messages[1:])
            if current.is_assistant and following.is_student
        )

    return {
        "avg_length": _round_half_up(avg_length),
        "citation_rate": round(citation_count / assistant_count, 2),
        "follow_up_rate": round(follow_ups / assistant_count, 2),
    }


def empty_response_quality() -> Dict:
    """Return empty response quality structure."""
    return {"avg_length": 0, "citation_rate": 0.0, "follow_up_rate": 0.0}


def compute_chat_volume(
    messages: Iterable[ChatMessage],
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[Dict]:
    """Daily student/assistant message counts and mean assistant response time."""
    by_day: Dict[str, Dict] = {}
    for message in messages:
        day_key = _in_timezone(message.created_at, config.cost_timezone).date().isoformat()
        if day_key not in by_day:
            by_day[day_key] = {"student_messages": 0, "assistant_messages": 0, "response_times": []}

        day_data = by_day[day_key]
        if message.is_student:
            day_data["student_messages"] += 1
        elif message.is_assistant:
            day_data["assistant_messages"] += 1
            if message.response_time_ms is not None:
                day_data["response_times"].append(message.response_time_ms)

    volume = []
    for day_key in sorted(by_day):
        day_data = by_day[day_key]
        response_times = day_data["response_times"]
        volume.append(
            {
                "date": day_key,
                "student_messages": day_data["student_messages"],
                "assistant_messages": day_data["assistant_messages"],
                "avg_response_time_ms": sum(response_times) / len(response_times) if response_times else 0.0,
            }
        )
    return volume


def _weighted_points(normalized: float, cap: int) -> int:
    return _round_half_up(_clamp_unit(normalized) * cap)


def _clamp_unit(value: Optional[float]) -> float:
    if value is None or math.isnan(value):
        return 0.0
    return min(max(float(value), 0.0), 1.0)


def _ratio(value: float, target: float) -> float:
    return value / target if target > 0 else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _in_timezone(value: datetime, tz: tzinfo) -> datetime:
    # Naive timestamps from the datastore are UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)


def _date_range(first: date, last: date) -> Sequence[date]:
    days = (last - first).days
    return [first + timedelta(days=offset) for offset in range(days + 1)]
