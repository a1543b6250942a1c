from __future__ import annotations

import base64
import json
import logging
from datetime import date
from typing import Any, Sequence

import requests

from .errors import ClassificationError
from .models import Category, Classification, DayAnalysis, DurationEstimate, Note, Sample

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_ANALYSIS_MODEL = "gemini-2.5-pro"
REQUEST_TIMEOUT_SECONDS = 120
HISTORY_LIMIT = 20

_CATEGORY_GUIDE = (
    "- Games, videos, live streams, entertainment YouTube, social media feeds and casual "
    "browsing are ENTERTAINMENT, even when the user is commenting or chatting on them.\n"
    "- Coding, documents and other professional tasks are WORK.\n"
    "- Courses, tutorials, research, and educational videos or podcasts are LEARN.\n"
    "- Meetings, direct messages, email and other personal or professional communication "
    "are SOCIAL.\n"
    "- Anything else (shopping, personal finance, system settings, ...) is OTHER."
)


class GeminiClassifier:
    """Classifies screenshots and writes day reports through the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        analysis_model: str = DEFAULT_ANALYSIS_MODEL,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        if not api_key.strip():
            raise ValueError("API key is required.")
        if not model.strip():
            raise ValueError("Model is required.")
        self._api_key = api_key.strip()
        self._model = model.strip()
        self._analysis_model = analysis_model.strip() or self._model
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._model

    def classify(self, image_bytes: bytes, recent: Sequence[Sample] = ()) -> Classification:
        parts: list[dict[str, Any]] = [
            {
                "inline_data": {
                    "mime_type": "image/jpeg",
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }
            },
            {"text": _build_classification_prompt(recent)},
        ]
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": 0.6,
                "responseMimeType": "application/json",
                "responseSchema": _classification_schema(),
            },
        }
        data = self._post(self._model, payload)
        parsed = _parse_ai_json(_extract_gemini_text(data))
        result = _normalize_classification(parsed)
        logger.debug("Classified screenshot as %s (%s)", result.category.value, result.label)
        return result

    def write_day_analysis(
        self,
        day: date,
        samples: Sequence[Sample],
        notes: Sequence[Note],
        daily_stats: dict[str, DurationEstimate],
        previous_notes: Sequence[Note] = (),
        previous_analyses: Sequence[DayAnalysis] = (),
    ) -> str:
        prompt = _build_day_analysis_prompt(
            day=day,
            samples=samples,
            notes=notes,
            daily_stats=daily_stats,
            previous_notes=previous_notes,
            previous_analyses=previous_analyses,
        )
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.7, "maxOutputTokens": 8192},
        }
        data = self._post(self._analysis_model, payload)
        return _extract_gemini_text(data).strip()

    def chat(self, message: str, samples: Sequence[Sample]) -> str:
        """Answers a question about the user's activity history."""
        if not message.strip():
            raise ValueError("Message is required.")
        payload = {
            "contents": [{"role": "user", "parts": [{"text": _build_chat_prompt(message, samples)}]}],
            "generationConfig": {"temperature": 0.7, "maxOutputTokens": 2048},
        }
        data = self._post(self._model, payload)
        return _extract_gemini_text(data).strip()

    def _post(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = GEMINI_ENDPOINT.format(model=model)
        try:
            response = self._session.post(
                url,
                params={"key": self._api_key},
                json=payload,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise ClassificationError(f"AI request failed: {exc}") from exc

        if response.status_code != 200:
            raise ClassificationError(f"AI request failed ({response.status_code}): {response.text[:500]}")
        try:
            return response.json()
        except ValueError as exc:
            raise ClassificationError("AI provider returned non-JSON response.") from exc


def _classification_schema() -> dict[str, Any]:
    names = [category.value for category in Category.tracked()]
    return {
        "type": "OBJECT",
        "properties": {
            "category": {
                "type": "STRING",
                "enum": names,
                "description": "The category of the activity, one of: " + ", ".join(names),
            },
            "activity": {
                "type": "STRING",
                "description": "Short label for the activity (software development, browsing reddit, ...)",
            },
            "description": {
                "type": "STRING",
                "description": "What the user is doing and what is visible on screen (150-200 words)",
            },
        },
        "required": ["category", "activity", "description"],
    }


def _build_classification_prompt(recent: Sequence[Sample]) -> str:
    names = ", ".join(category.value for category in Category.tracked())
    lines = [
        "Analyze this screenshot and categorize the activity by the user's apparent task.",
        'Return a JSON object with "category", "activity" and "description" fields.',
        f"category must be EXACTLY one of: {names}.",
        "Focus on the purpose of the activity rather than the specific application:",
        _CATEGORY_GUIDE,
        'The "description" should explain what the user is doing, what is visible on the screen '
        "and any relevant context, in 150-300 words.",
    ]
    history = [row for row in recent if row.category is not Category.UNKNOWN][:HISTORY_LIMIT]
    if history:
        lines.append(
            f"Recent activity (last {len(history)} samples, newest first). If the user is still "
            "doing the same thing, only mention what is new:"
        )
        for row in history:
            lines.append(
                f"- [{row.timestamp.astimezone().strftime('%H:%M:%S')}] "
                f"Category: {row.category.value}, Activity: {row.label}"
            )
            if row.description:
                lines.append(f"  Description: {row.description}")
    return "\n".join(lines)


def _build_day_analysis_prompt(
    day: date,
    samples: Sequence[Sample],
    notes: Sequence[Note],
    daily_stats: dict[str, DurationEstimate],
    previous_notes: Sequence[Note],
    previous_analyses: Sequence[DayAnalysis],
) -> str:
    activities = [
        {
            "timestamp": row.timestamp.isoformat(timespec="seconds"),
            "category": row.category.value,
            "activity": row.label,
            "description": row.description or "",
        }
        for row in samples
        if row.category is not Category.UNKNOWN
    ]
    stats = {key: value.to_dict() for key, value in daily_stats.items()}
    return "\n".join(
        [
            "You are a behavioral analyst. Write a report about my day from my activity log and notes, "
            "taking this month's history into account.",
            f"Date: {day.isoformat()}",
            "",
            "Today's activities (timestamps, categories and descriptions):",
            json.dumps(activities, indent=2),
            "",
            "Today's notes:",
            json.dumps([{"timestamp": n.timestamp.isoformat(timespec="seconds"), "content": n.content} for n in notes], indent=2),
            "",
            "The report has three sections:",
            "1. **My Day:** a short, chronological, first-person summary with concrete time estimates.",
            "2. **Behavioral Analysis:** a numbered list of 3-4 concise, actionable patterns about focus, "
            "context switching and triggers, written in the third person.",
            "3. **Monthly Progress & Trends:** a numbered list comparing today with the previous days, "
            "backed by the category statistics below.",
            "",
            "Daily category statistics for this month:",
            json.dumps(stats, indent=2),
            "",
            "Previous days' notes:",
            json.dumps([{"day": n.day, "content": n.content} for n in previous_notes], indent=2),
            "",
            "Previous days' analyses:",
            json.dumps([{"day": a.day, "content": a.content} for a in previous_analyses], indent=2),
            "",
            "Return only the markdown report, with no introduction.",
        ]
    )


def _build_chat_prompt(message: str, samples: Sequence[Sample]) -> str:
    activities = [
        {
            "timestamp": row.timestamp.isoformat(timespec="seconds"),
            "category": row.category.value,
            "activity": row.label,
            "description": row.description or "",
        }
        for row in samples
        if row.category is not Category.UNKNOWN
    ]
    return "\n".join(
        [
            'You are an analyst assistant for a productivity tracker called "What Did I Do".',
            "You can see the user's categorized activity samples from the past 30 days. Use them to "
            "give insights about productivity patterns, habits and behaviors.",
            "",
            "Activity data from the past 30 days:",
            json.dumps(activities, indent=2),
            "",
            "The categories are:",
            _CATEGORY_GUIDE,
            "",
            "When responding, be helpful and specific, give actionable advice when it fits, refer to "
            "concrete data points and their timestamps when asked about a period, and keep the tone "
            "conversational.",
            "",
            f"User's message: {message.strip()}",
        ]
    )


def _extract_gemini_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise ClassificationError("Gemini response missing candidates.")
    content = candidates[0].get("content", {})
    parts = content.get("parts", [])
    for part in parts:
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            return text
    raise ClassificationError("Gemini response did not include text output.")


def _parse_ai_json(text: str) -> dict[str, Any]:
    trimmed = text.strip()
    if not trimmed:
        raise ClassificationError("AI response was empty.")
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        start = trimmed.find("{")
        end = trimmed.rfind("}")
        if start == -1 or end == -1 or start >= end:
            raise ClassificationError("AI response did not contain valid JSON.")
        try:
            parsed = json.loads(trimmed[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ClassificationError("AI response contained invalid JSON.") from exc
    if not isinstance(parsed, dict):
        raise ClassificationError("AI response was not a JSON object.")
    return parsed


def _normalize_classification(parsed: dict[str, Any]) -> Classification:
    activity = str(parsed.get("activity", "")).strip()
    if not activity:
        raise ClassificationError("AI response did not include an activity.")
    try:
        category = Category.parse(str(parsed.get("category", "")))
    except ValueError as exc:
        raise ClassificationError(f"AI response had an unusable category: {exc}") from exc
    if category is Category.UNKNOWN:
        raise ClassificationError("AI response classified the screenshot as UNKNOWN.")

    description = str(parsed.get("description", "")).strip() or "No description available."
    return Classification(category=category, label=activity, description=description)
