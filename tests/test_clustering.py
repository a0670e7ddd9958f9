from datetime import datetime, timedelta, timezone

import pytest

from creatormet.analytics import cluster_question_records, cluster_questions, pair_questions_with_responses
from creatormet.config import EngineConfig
from creatormet.models import ChatMessage, QuestionRecord
from creatormet.text import levenshtein_distance, normalize_question, similarity

# Synthetic strings with known distances: A~B and B~C at 0.75, A~C at 0.5.
A = "a" * 20
B = "a" * 15 + "b" * 5
C = "a" * 10 + "b" * 10


def test_normalize_question():
    assert normalize_question("  How DO I   start?!  ") == "how do i start"
    assert normalize_question("What's the video_id?") == "whats the videoid"
    assert normalize_question("?!.") == ""


@pytest.mark.parametrize(
    "first, second, expected",
    [
        ("kitten", "sitting", 3),
        ("flaw", "lawn", 2),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
    ],
)
def test_levenshtein_distance(first, second, expected):
    assert levenshtein_distance(first, second) == expected


def test_similarity():
    assert similarity("", "") == 1.0
    assert similarity("abc", "") == 0.0
    assert similarity("how do i start", "how can i start") == pytest.approx(0.8)


def test_cluster_questions_groups_near_duplicates():
    questions = ["How do I start?", "How can I start?", "What is trading?"]

    clusters = cluster_questions(questions)

    assert len(clusters) == 2
    assert clusters[0].representative == "How do I start?"
    assert clusters[0].variations == ("How can I start?",)
    assert clusters[0].count == 2
    assert clusters[1].representative == "What is trading?"
    assert clusters[1].variations == ()
    assert clusters[1].count == 1


def test_cluster_questions_keeps_paraphrases_apart_below_threshold():
    questions = ["How do I start?", "How to begin?", "What is trading?"]

    clusters = cluster_questions(questions)

    # "how do i start" vs "how to begin": distance 8 over 14 characters
    assert similarity("how do i start", "how to begin") == pytest.approx(1 - 8 / 14)
    assert [cluster.representative for cluster in clusters] == questions
    assert [cluster.count for cluster in clusters] == [1, 1, 1]


def test_cluster_questions_counts_duplicates_individually():
    questions = ["How do I start?", "how do i start", "How do I start?", "How do I start?"]

    clusters = cluster_questions(questions)

    assert len(clusters) == 1
    assert clusters[0].count == 4
    assert clusters[0].variations == ("how do i start",)


def test_cluster_questions_compares_against_representative_only():
    assert [c.count for c in cluster_questions([A, B, C])] == [2, 1]
    assert [c.count for c in cluster_questions([B, A, C])] == [3]


def test_cluster_questions_first_matching_cluster_wins():
    clusters = cluster_questions([A, C, B])

    assert [c.representative for c in clusters] == [A, C]
    assert clusters[0].variations == (B,)
    assert clusters[1].count == 1


def test_cluster_questions_is_deterministic_and_preserves_counts():
    questions = [
        "Where is the quiz?",
        "where is the guide",
        "How do I reset my password?",
        "How do I reset my pasword",
        "Can I get a refund?",
        "Where is the quiz",
        "",
        "?!",
    ]

    first = cluster_questions(questions)
    second = cluster_questions(questions)

    assert first == second
    assert sum(cluster.count for cluster in first) == len(questions)
    assert [c.representative for c in first] == [
        "Where is the quiz?",
        "How do I reset my password?",
        "Can I get a refund?",
        "",
    ]


def test_cluster_questions_respects_configured_threshold():
    questions = ["where is the quiz", "where is the guide"]

    assert len(cluster_questions(questions)) == 1
    assert len(cluster_questions(questions, EngineConfig(similarity_threshold=0.9))) == 2


def test_cluster_questions_empty_input():
    assert cluster_questions([]) == []


def test_cluster_question_records_folds_response_times_and_videos():
    records = [
        QuestionRecord(text="How do I start?", response_time_ms=1000, cited_video_ids=("v1", "v2")),
        QuestionRecord(text="How can I start?", response_time_ms=None, cited_video_ids=("v2", "v3")),
        QuestionRecord(text="how do i start", response_time_ms=3000),
        QuestionRecord(text="What is trading?"),
    ]

    clusters = cluster_question_records(records)

    assert clusters[0].count == 3
    assert clusters[0].avg_response_time_ms == 2000.0
    assert clusters[0].cited_video_ids == ("v1", "v2", "v3")
    assert clusters[1].avg_response_time_ms == 0.0
    assert clusters[1].cited_video_ids == ()
    assert clusters[0].to_dict()["variations"] == ["How can I start?", "how do i start"]


def test_pair_questions_with_responses():
    base = datetime(2026, 1, 5, 10, tzinfo=timezone.utc)

    def message(message_id, minutes, role, student_id, content, **extra):
        return ChatMessage(
            message_id=message_id,
            student_id=student_id,
            creator_id="c1",
            role=role,
            content=content,
            created_at=base + timedelta(minutes=minutes),
            **extra,
        )

    messages = [
        message("q1", 0, "student", "s1", " How do I start? "),
        message("a1", 1, "assistant", "s1", "Watch this", response_time_ms=1200, video_references=("v1",)),
        message("q3", 2, "student", "s2", "What is trading?"),
        message("a3", 3, "assistant", "s2", "See video_id: abc-1", response_time_ms=800),
        message("q2", 5, "student", "s1", "Anything else?"),
    ]

    records = pair_questions_with_responses(messages)

    assert records == [
        QuestionRecord(text="How do I start?", response_time_ms=1200, cited_video_ids=("v1",)),
        QuestionRecord(text="What is trading?", response_time_ms=800, cited_video_ids=("abc-1",)),
        QuestionRecord(text="Anything else?", response_time_ms=None, cited_video_ids=()),
    ]
