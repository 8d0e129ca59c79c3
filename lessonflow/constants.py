"""Shared constants for lessonflow."""

from __future__ import annotations

DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULT_AUTO_APPROVE_THRESHOLD = 0.8

# Request field carrying the resource id when starting a processor job.
DEFAULT_RESOURCE_FIELD = "lesson_id"

# Processor endpoint for each step name, relative to the job client base url.
DEFAULT_STEP_ENDPOINTS = {
    "transcription": "/process-lesson-audio",
    "summarization": "/generate-summary",
    "content_analysis": "/analyze-content",
    "flashcard_generation": "/generate-flashcards",
    "review": "/request-review",
    "deployment": "/deploy-lesson",
}

REDIS_KEY_PREFIX = "lessonflow"
