import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from errors import AIServiceError, AuthRequiredError


logger = logging.getLogger(__name__)

GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_URL = os.getenv(
    "GEMINI_API_URL",
    f"https://generativelanguage.googleapis.com/v1beta/models/{GEMINI_MODEL_NAME}:generateContent",
)

PROMPT_TEMPLATE = """
You are a digital wellness coach. Analyze this user's digital consumption data and provide personalized suggestions, tips, and micro habits.

User Data:
- Apps used: {apps}
- Screen time: {screen_time} minutes
- Reflection: "{reflection}"
- Emotional tags: {tags}

Please provide:
1. A brief analysis of their digital consumption pattern
2. 3 specific suggestions for improvement
3. 2 micro habits they can implement today
4. 1 motivational tip

Keep the response concise, actionable, and encouraging. Focus on practical steps they can take immediately.

Format your response as JSON with these keys: analysis, suggestions, microHabits, motivationalTip
"""

PING_PROMPT = "Hello! Please respond with 'API key is working perfectly' if you can read this message."

SOURCE_MODEL = "model"
SOURCE_UNPARSEABLE = "unparseable"
SOURCE_SERVICE_ERROR = "service_error"


@dataclass(frozen=True)
class Reflection:
    analysis: str
    suggestions: list[str]
    micro_habits: list[str]
    motivational_tip: str
    source: str = SOURCE_MODEL
    raw_response: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.source == SOURCE_SERVICE_ERROR

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "analysis": self.analysis,
            "suggestions": list(self.suggestions),
            "microHabits": list(self.micro_habits),
            "motivationalTip": self.motivational_tip,
        }
        if self.raw_response is not None:
            payload["rawResponse"] = self.raw_response
        return payload


def unparseable_fallback(raw_text: str) -> Reflection:
    return Reflection(
        analysis="Based on your digital consumption patterns, I can see areas for improvement.",
        suggestions=[
            "Set specific time limits for social media apps",
            "Practice the 20-20-20 rule: every 20 minutes, look at something 20 feet away for 20 seconds",
            "Create a mindful app usage routine",
        ],
        micro_habits=[
            "Take a 5-minute break after every 30 minutes of screen time",
            "Write down your intention before opening any app",
        ],
        motivational_tip=(
            "Remember, small changes lead to big transformations. You're taking the first "
            "step towards conscious digital consumption!"
        ),
        source=SOURCE_UNPARSEABLE,
        raw_response=raw_text,
    )


def service_fallback(error_kind: str) -> Reflection:
    return Reflection(
        analysis=(
            "I can see you're being mindful about your digital consumption. "
            "Keep tracking your usage patterns!"
        ),
        suggestions=[
            "Set specific time limits for your most used apps",
            "Practice mindful scrolling by asking 'Why am I opening this app?'",
            "Create device-free zones in your home",
        ],
        micro_habits=[
            "Take a deep breath before unlocking your phone",
            "Set your phone to grayscale mode to reduce visual appeal",
        ],
        motivational_tip="Every moment of awareness is progress. You're building healthier digital habits!",
        source=SOURCE_SERVICE_ERROR,
        error_kind=error_kind,
    )


def build_prompt(apps: list, screen_time: float, reflection: str, tags: list) -> str:
    return PROMPT_TEMPLATE.format(
        apps=json.dumps(apps, ensure_ascii=False),
        screen_time=screen_time,
        reflection=reflection,
        tags=json.dumps(tags, ensure_ascii=False),
    )


def request_reflection(
    apps: list,
    screen_time: float,
    reflection: str,
    tags: list,
    user_id: Optional[int] = None,
) -> Reflection:
    """
    Ask the model for coaching feedback on one entry.

    Never raises for remote trouble: a failed call yields ``service_fallback``
    and an answer that is not the four-key JSON shape yields
    ``unparseable_fallback`` carrying the raw text. Nothing is persisted.
    """
    if not user_id:
        raise AuthRequiredError()

    prompt = build_prompt(apps, screen_time, reflection, tags)
    try:
        text = call_gemini(prompt)
    except AIServiceError as exc:
        logger.error("AI analysis failed (%s): %s", exc.kind, exc.detail)
        return service_fallback(exc.kind)

    try:
        return parse_reflection(text)
    except ValueError as exc:
        logger.warning("AI answer was not structured JSON (%s); using fallback", exc)
        return unparseable_fallback(text)


def ping() -> tuple[bool, str]:
    try:
        text = call_gemini(PING_PROMPT)
    except AIServiceError as exc:
        return False, _describe_failure(exc)
    return True, text.strip()


def call_gemini(prompt: str) -> str:
    """Single POST to generateContent; returns the first text part."""
    api_key = os.getenv("GEMINI_API_KEY", "").strip()
    if not api_key:
        raise AIServiceError("config", "GEMINI_API_KEY is not set")

    timeout_seconds = float(os.getenv("GEMINI_API_TIMEOUT", "30"))
    headers = {"Content-Type": "application/json", "X-goog-api-key": api_key}
    payload = {"contents": [{"parts": [{"text": prompt}]}]}

    try:
        response = requests.post(
            GEMINI_API_URL, headers=headers, json=payload, timeout=timeout_seconds
        )
    except requests.Timeout as exc:
        raise AIServiceError("timeout", str(exc)) from exc
    except requests.RequestException as exc:
        raise AIServiceError("network", str(exc)) from exc

    if response.status_code in {401, 403}:
        raise AIServiceError("auth", response.text)
    if response.status_code == 429:
        raise AIServiceError("rate_limit", response.text)
    if response.status_code != 200:
        raise AIServiceError("http", f"{response.status_code}: {response.text}")

    try:
        data = response.json()
    except ValueError as exc:
        raise AIServiceError("malformed", "response body is not JSON") from exc
    return _extract_text(data)


def parse_reflection(text: str) -> Reflection:
    """Strictly decode the four-key answer. Raises ValueError on any mismatch."""
    data = _decode_json_object(text)

    analysis = data.get("analysis")
    suggestions = data.get("suggestions")
    micro_habits = data.get("microHabits")
    tip = data.get("motivationalTip")

    if not isinstance(analysis, str) or not analysis.strip():
        raise ValueError("missing analysis")
    if not _is_str_list(suggestions):
        raise ValueError("suggestions must be a list of strings")
    if not _is_str_list(micro_habits):
        raise ValueError("microHabits must be a list of strings")
    if not isinstance(tip, str) or not tip.strip():
        raise ValueError("missing motivationalTip")

    return Reflection(
        analysis=analysis.strip(),
        suggestions=[s.strip() for s in suggestions],
        micro_habits=[h.strip() for h in micro_habits],
        motivational_tip=tip.strip(),
    )


def _decode_json_object(text: str) -> dict:
    trimmed = (text or "").strip()
    if not trimmed:
        raise ValueError("empty answer")
    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError:
        # Models like to wrap JSON in a ```json fence or a sentence.
        start = trimmed.find("{")
        end = trimmed.rfind("}")
        if start == -1 or end == -1 or start >= end:
            raise ValueError("no JSON object in answer")
        try:
            data = json.loads(trimmed[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ValueError("invalid JSON in answer") from exc
    if not isinstance(data, dict):
        raise ValueError("answer is not a JSON object")
    return data


def _extract_text(data: Any) -> str:
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list) or not candidates:
        raise AIServiceError("malformed", "response missing candidates")
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content") or {}
    for part in content.get("parts") or []:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            return text
    raise AIServiceError("malformed", "response did not include text output")


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _describe_failure(exc: AIServiceError) -> str:
    messages = {
        "config": "GEMINI_API_KEY is not set",
        "auth": "Authentication error - check your API key and its permissions",
        "rate_limit": "Rate limit exceeded - try again later",
        "timeout": "The AI service did not answer in time",
        "network": "Could not reach the AI service",
        "malformed": "The AI service returned an unexpected response",
    }
    return messages.get(exc.kind, f"API key error: {exc.detail}")
