"""Static metadata describing the quiz engine."""

APP_NAME = "QuizEngine"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizEngine scores quiz attempts across eleven question kinds, runs timed "
    "quiz-taking sessions, and reports analytics over historical attempts."
)
