"""Quiz-related constants shared across scoring, session and analytics layers."""

DEFAULT_PASSING_SCORE: int = 70
DEFAULT_TOLERANCE: float = 0.01
PARTIAL_CREDIT_PENALTY: float = 0.5
KEYWORD_CREDIT_FACTOR: float = 0.5

TICK_INTERVAL_SECONDS: float = 1.0

# Keyed by QuestionType value.
DEFAULT_POINTS: dict[str, float] = {
    "multiple_choice": 1,
    "true_false": 1,
    "multiple_select": 2,
    "fill_blank": 2,
    "short_answer": 3,
    "matching": 3,
    "ordering": 3,
    "calculation": 4,
    "diagram_label": 4,
    "essay": 10,
    "case_study": 10,
}

ESTIMATED_TIME_SECONDS: dict[str, int] = {
    "multiple_choice": 30,
    "true_false": 30,
    "multiple_select": 45,
    "fill_blank": 60,
    "short_answer": 90,
    "matching": 120,
    "ordering": 90,
    "calculation": 180,
    "diagram_label": 120,
    "essay": 900,
    "case_study": 600,
}
FALLBACK_ESTIMATED_TIME_SECONDS: int = 60

DISCRIMINATION_MIN_ATTEMPTS: int = 10
DISCRIMINATION_GROUP_FRACTION: float = 0.27

WEAK_TOPIC_THRESHOLD: int = 50
STRONG_TOPIC_THRESHOLD: int = 80
SLOW_TOPIC_SECONDS: int = 120
SLOW_QUESTION_SECONDS: int = 90
LOW_SCORE_THRESHOLD: int = 60
HIGH_SCORE_THRESHOLD: int = 90

RECENT_ATTEMPTS_LIMIT: int = 10

SCORE_BUCKETS: tuple[tuple[int, int], ...] = (
    (0, 20),
    (21, 40),
    (41, 60),
    (61, 80),
    (81, 100),
)
