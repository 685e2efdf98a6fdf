"""
Question generators: a deterministic stub for development and tests, and an
OpenAI chat-completions generator for production.
"""

import hashlib
import json
from typing import Any

import openai
from openai import AsyncOpenAI

from tutor_jobs.config.settings import Settings
from tutor_jobs.v1.core.exceptions import (
    PermanentJobError,
    TransientJobError,
    openai_job_error,
)
from tutor_jobs.v1.gen.prompts import VARIANT_PROMPT, build_chat_request, parse_questions_content

_DIFFICULTY_RANGES = {"easy": (1, 10), "medium": (10, 50), "hard": (50, 200)}


class StubQuestionGenerator:
    """
    Deterministic arithmetic questions derived from a hash of the topic.

    Same inputs always produce the same questions, so tests can assert on
    content without network access.
    """

    def _numbers(self, seed: str, index: int, difficulty: str) -> tuple[int, int]:
        low, high = _DIFFICULTY_RANGES.get(difficulty, (10, 50))
        digest = hashlib.sha256(f"{seed}:{index}".encode("utf-8")).digest()
        span = high - low + 1
        return low + digest[0] % span, low + digest[1] % span

    async def generate(
        self,
        topic_name: str,
        description: str | None,
        count: int,
        difficulty: str,
        avoid: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        questions = []
        for index in range(count):
            a, b = self._numbers(topic_name, index, difficulty)
            questions.append(
                {
                    "questionLatex": f"{topic_name}: calculate \\({a} + {b}\\)",
                    "answerLatex": f"\\({a + b}\\)",
                    "answerValue": a + b,
                    "answerType": "numeric",
                    "difficulty": difficulty,
                    "hints": [f"Start by adding the tens of {a} and {b}."],
                    "solutionSteps": [{"step": f"{a} + {b} = {a + b}"}],
                    "tags": ["addition", topic_name.lower()],
                }
            )
        return questions

    async def generate_variant(self, question: dict[str, Any]) -> dict[str, Any]:
        seed = question.get("questionLatex") or question.get("prompt_text") or ""
        a, b = self._numbers(seed, 0, "medium")
        return {
            "questionLatex": f"Variant: calculate \\({a} \\times {b}\\)",
            "answerLatex": f"\\({a * b}\\)",
            "answerValue": a * b,
            "answerType": "numeric",
            "difficulty": question.get("difficulty", 3),
            "hints": ["Break one factor into tens and ones."],
            "solutionSteps": [{"step": f"{a} \\times {b} = {a * b}"}],
            "tags": ["variant"],
        }


class OpenAIQuestionGenerator:
    """Chat-completions generator in JSON mode."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        """Lazy load OpenAI client."""
        if self._client is None:
            if not self.settings.openai_api_key:
                raise PermanentJobError(
                    "OPENAI_API_KEY is required for the openai question generator"
                )
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def _complete(self, body: dict[str, Any]) -> str | None:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(**body)
        except openai.OpenAIError as e:
            raise openai_job_error("OpenAI completion failed", e) from e
        return response.choices[0].message.content

    async def generate(
        self,
        topic_name: str,
        description: str | None,
        count: int,
        difficulty: str,
        avoid: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        body = build_chat_request(
            self.settings.batch_model, topic_name, description, count, difficulty, avoid
        )
        content = await self._complete(body)
        try:
            return parse_questions_content(content)
        except ValueError as e:
            raise TransientJobError(f"Unusable completion: {e}") from e

    async def generate_variant(self, question: dict[str, Any]) -> dict[str, Any]:
        body = {
            "model": self.settings.batch_model,
            "messages": [
                {"role": "system", "content": VARIANT_PROMPT},
                {"role": "user", "content": json.dumps(question)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.8,
        }
        content = await self._complete(body)
        try:
            variant = json.loads(content or "")
        except ValueError as e:
            raise TransientJobError(f"Unusable completion: {e}") from e
        if isinstance(variant.get("questions"), list) and variant["questions"]:
            return variant["questions"][0]
        return variant
