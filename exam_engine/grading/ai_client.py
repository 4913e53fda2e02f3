# FILE: exam_engine/grading/ai_client.py
"""
OpenAI-backed evaluator for open-text answers

evaluate() never raises: it returns either an AIVerdict or an
AIGradingFailure describing why no verdict is available.
"""
import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

import openai
from openai import OpenAI

from exam_engine.config import get_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a professional teacher. Evaluate the student's answer against the provided "
    "solution liberally and kindly. Output ONLY a JSON object with keys: marksObtained "
    "(number), isCorrect (true|false|null), feedback (short string). Do not include any extra text."
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class FailureKind(str, enum.Enum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class AIVerdict:
    marks_obtained: float
    is_correct: Optional[bool]
    feedback: str = ""


@dataclass(frozen=True)
class AIGradingFailure:
    kind: FailureKind
    detail: str = ""


AIOutcome = Union[AIVerdict, AIGradingFailure]


def parse_verdict(content: str) -> Optional[AIVerdict]:
    """Parse model output, tolerating prose around the JSON object"""
    parsed: Any = None
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        match = _JSON_OBJECT.search(content or "")
        if match:
            try:
                parsed = json.loads(match.group(0))
            except ValueError:
                parsed = None

    if not isinstance(parsed, dict):
        return None

    marks = parsed.get("marksObtained")
    if isinstance(marks, bool) or not isinstance(marks, (int, float)):
        return None

    is_correct = parsed.get("isCorrect")
    return AIVerdict(
        marks_obtained=float(marks),
        is_correct=is_correct if isinstance(is_correct, bool) else None,
        feedback=str(parsed.get("feedback") or "")
    )


class OpenAIGrader:
    """Chat-completions grader with a hard network timeout and no retries"""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 15.0,
        temperature: float = 0.2,
        base_url: Optional[str] = None,
        client: Any = None
    ):
        self.model = model
        self.temperature = temperature
        if client is None and api_key:
            client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout_seconds,
                max_retries=0
            )
        self.client = client
        logger.info(f"OpenAI grader: model={model}, enabled={self.client is not None}")

    def evaluate(self, reference_solution: str, student_answer: str, max_marks: float) -> AIOutcome:
        if self.client is None:
            return AIGradingFailure(FailureKind.UNAVAILABLE, "AI grading not configured")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": (
                            f"Solution: {reference_solution}\n\n"
                            f"Student Answer: {student_answer}\n\n"
                            f"MaxMarks: {max_marks:g}"
                        )
                    }
                ],
                temperature=self.temperature
            )
        except openai.APITimeoutError as e:
            return AIGradingFailure(FailureKind.TIMEOUT, str(e))
        except openai.APIConnectionError as e:
            return AIGradingFailure(FailureKind.TRANSPORT, str(e))
        except openai.APIStatusError as e:
            return AIGradingFailure(FailureKind.HTTP_STATUS, f"status={e.status_code}")
        except openai.OpenAIError as e:
            return AIGradingFailure(FailureKind.TRANSPORT, str(e))

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError):
            return AIGradingFailure(FailureKind.MALFORMED, "response has no message content")

        verdict = parse_verdict(content)
        if verdict is None:
            return AIGradingFailure(FailureKind.MALFORMED, f"unparseable content: {content[:200]!r}")
        return verdict


_grader: Optional[OpenAIGrader] = None


def get_ai_grader() -> OpenAIGrader:
    """Get or create global AI grader"""
    global _grader
    if _grader is None:
        settings = get_settings()
        _grader = OpenAIGrader(
            api_key=settings.openai_api_key if settings.ai_grading_enabled else None,
            model=settings.ai_grading_model,
            timeout_seconds=settings.ai_grading_timeout_seconds,
            temperature=settings.ai_grading_temperature,
            base_url=settings.openai_base_url
        )
    return _grader
