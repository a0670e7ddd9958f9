"""creatormet - analytics aggregation for creator course dashboards."""

import logging

from .analytics import (
    calculate_active_users_over_time,
    calculate_cohort_retention,
    calculate_dau,
    calculate_mau,
    calculate_retention_rate,
    calculate_trend,
    cluster_question_records,
    cluster_questions,
    compute_aggregate_engagement,
    compute_chat_volume,
    compute_cost_breakdown,
    compute_engagement_score,
    compute_response_quality,
    extract_video_references,
    group_activities_by_date,
    has_video_reference,
    message_cost,
    pair_questions_with_responses,
    score_normalized_engagement,
    segment_sessions,
    segment_sessions_by_student,
    session_duration_distribution,
    summarize_sessions,
)
from .config import DEFAULT_CONFIG, EngagementWeights, EngineConfig, ModelPricing, config_from_env, load_price_table
from .errors import ConfigurationError, CreatorMetError, MixedStudentError, NegativeBaselineError
from .service import DashboardAnalyticsService

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DashboardAnalyticsService",
    "EngineConfig",
    "EngagementWeights",
    "ModelPricing",
    "DEFAULT_CONFIG",
    "config_from_env",
    "load_price_table",
    "segment_sessions",
    "segment_sessions_by_student",
    "summarize_sessions",
    "session_duration_distribution",
    "cluster_questions",
    "cluster_question_records",
    "pair_questions_with_responses",
    "message_cost",
    "compute_cost_breakdown",
    "score_normalized_engagement",
    "compute_engagement_score",
    "compute_aggregate_engagement",
    "calculate_dau",
    "calculate_mau",
    "group_activities_by_date",
    "calculate_active_users_over_time",
    "calculate_cohort_retention",
    "calculate_retention_rate",
    "calculate_trend",
    "has_video_reference",
    "extract_video_references",
    "compute_response_quality",
    "compute_chat_volume",
    "CreatorMetError",
    "MixedStudentError",
    "NegativeBaselineError",
    "ConfigurationError",
]

__version__ = "0.1.0"
