"""
Grading suggestion generation for free-response answers.

`OpenAISuggestionGenerator` asks a chat model for a score and feedback when
OPENAI_API_KEY is configured. Without a key the deterministic
`HeuristicSuggestionGenerator` keeps the suggestion workflow usable. A
generator only proposes; a suggestion becomes a grade only through an
explicit save.
"""
import abc
import json
import logging
import math
import re
from typing import Any, Dict, Optional

import openai
from openai import OpenAI

from assessment.core.config import settings
from assessment.core.errors import SuggestionProviderError
from assessment.schemas import Answer, GradeSuggestion, Question

logger = logging.getLogger(__name__)

# Responses at or above this many words are treated as fully developed
FULL_CREDIT_WORDS = 60

_WORD = re.compile(r"[A-Za-z0-9']+")


class SuggestionGenerator(abc.ABC):
    """Produces a grading suggestion for one free-response answer."""

    @abc.abstractmethod
    def suggest(self, question: Question, answer: Answer) -> GradeSuggestion:
        """Return a suggestion with suggested_points in [0, question.points]."""


class HeuristicSuggestionGenerator(SuggestionGenerator):
    """Scores by response development and overlap with the prompt's vocabulary."""

    def suggest(self, question: Question, answer: Answer) -> GradeSuggestion:
        words = _WORD.findall(answer.answer_text or "")
        prompt_terms = {w.lower() for w in _WORD.findall(question.prompt_md or "") if len(w) > 3}
        used_terms = {w.lower() for w in words} & prompt_terms

        development = min(1.0, len(words) / FULL_CREDIT_WORDS)
        relevance = len(used_terms) / len(prompt_terms) if prompt_terms else 1.0
        fraction = 0.7 * development + 0.3 * relevance
        suggested = _round_half(question.points * fraction)

        return GradeSuggestion(
            answer_id=answer.id,
            suggested_points=min(suggested, question.points),
            max_points=question.points,
            explanation=_explain(len(words), len(used_terms), len(prompt_terms)),
            strengths=_strengths(development, used_terms),
            gaps=_gaps(development, relevance),
        )


def _round_half(value: float) -> float:
    return round(value * 2) / 2


def _explain(word_count: int, used: int, available: int) -> str:
    if word_count == 0:
        return "No response was given."
    return (
        f"Response of {word_count} word(s) using {used} of {available} key term(s) "
        f"from the prompt."
    )


def _strengths(development: float, used_terms: set) -> str:
    parts = []
    if development >= 1.0:
        parts.append("Fully developed response.")
    if used_terms:
        parts.append(f"Addresses: {', '.join(sorted(used_terms))}.")
    return " ".join(parts)


def _gaps(development: float, relevance: float) -> str:
    parts = []
    if development < 0.5:
        parts.append("Response is brief.")
    if relevance < 0.5:
        parts.append("Few key terms from the prompt are addressed.")
    return " ".join(parts)


# ==============================================================================
# OpenAI
# ==============================================================================

SUGGESTION_SCHEMA: Dict[str, Any] = {
    "suggestedScore": "number between 0 and maxScore, in steps of 0.5",
    "maxScore": "number",
    "summary": "one or two sentences justifying the score",
    "strengths": "what the response does well",
    "gaps": "what is missing or incorrect",
}

GRADING_PROMPT = """You are helping a teacher grade a free-response test question.

Question:
{prompt}

Maximum points: {max_points:g}

Student response:
{response}

Suggest a score for the response. The teacher makes the final decision."""


class OpenAISuggestionGenerator(SuggestionGenerator):
    """Chat-model grader using OpenAI JSON mode."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        timeout: float = 30.0,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)

    def suggest(self, question: Question, answer: Answer) -> GradeSuggestion:
        if not (answer.answer_text or "").strip():
            return HeuristicSuggestionGenerator().suggest(question, answer)

        prompt = GRADING_PROMPT.format(
            prompt=question.prompt_md or "",
            max_points=question.points,
            response=answer.answer_text,
        )
        payload = self._complete(prompt)
        return _suggestion_from_payload(payload, question, answer)

    def _complete(self, prompt: str) -> Dict[str, Any]:
        json_prompt = (
            f"{prompt}\n\nRespond with valid JSON matching this schema: "
            f"{json.dumps(SUGGESTION_SCHEMA)}"
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": json_prompt}],
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            logger.warning(f"OpenAI grading request failed: {e}")
            raise SuggestionProviderError(f"OpenAI request failed: {e}") from e

        content = response.choices[0].message.content or "{}"
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise SuggestionProviderError(f"Failed to parse JSON response: {e}") from e
        if not isinstance(payload, dict):
            raise SuggestionProviderError("Expected a JSON object from the model")
        return payload


def _suggestion_from_payload(
    payload: Dict[str, Any], question: Question, answer: Answer
) -> GradeSuggestion:
    """Clamp the model's score into [0, question.points] in half-point steps."""
    try:
        score = float(payload.get("suggestedScore"))
    except (TypeError, ValueError) as e:
        raise SuggestionProviderError("Model reply has no numeric suggestedScore") from e
    if not math.isfinite(score):
        raise SuggestionProviderError("Model reply has a non-finite suggestedScore")

    suggested = min(max(_round_half(score), 0.0), question.points)
    return GradeSuggestion(
        answer_id=answer.id,
        suggested_points=suggested,
        max_points=question.points,
        explanation=str(payload.get("summary") or ""),
        strengths=str(payload.get("strengths") or ""),
        gaps=str(payload.get("gaps") or ""),
    )


_generator: Optional[SuggestionGenerator] = None


def build_suggestion_generator() -> SuggestionGenerator:
    """OpenAI when a key is configured, the heuristic otherwise."""
    if settings.OPENAI_API_KEY:
        logger.info(f"Using OpenAI model {settings.OPENAI_MODEL} for grading suggestions")
        return OpenAISuggestionGenerator(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )
    return HeuristicSuggestionGenerator()


def get_suggestion_generator() -> SuggestionGenerator:
    """FastAPI dependency returning the configured generator."""
    global _generator
    if _generator is None:
        _generator = build_suggestion_generator()
    return _generator
