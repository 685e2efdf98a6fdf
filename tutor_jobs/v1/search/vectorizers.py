"""
Vectorizer implementations for question embeddings.

Supports two backends: stub (deterministic) and openai.
"""

import hashlib
import math

import openai
from openai import AsyncOpenAI

from tutor_jobs.config.settings import Settings
from tutor_jobs.v1.core.exceptions import PermanentJobError, openai_job_error


def content_hash(text: str) -> str:
    """Hash of the embedded text; unchanged text never needs a new vector."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class StubVectorizer:
    """
    Deterministic hash-based vectorizer for development and testing.

    Generates consistent vectors from text hashes without external calls.
    """

    def __init__(self, dimension: int = 64):
        self.dimension = dimension

    async def vectorize(self, text: str) -> list[float]:
        normalized_text = text.strip().lower()
        text_hash = hashlib.sha256(normalized_text.encode("utf-8")).hexdigest()

        # Each pair of hex chars becomes a float between -1 and 1
        vector = [
            (int(text_hash[i : i + 2], 16) / 127.5) - 1.0
            for i in range(0, len(text_hash), 2)
        ]
        while len(vector) < self.dimension:
            pos_val = (len(vector) % 256) / 127.5 - 1.0
            text_val = (len(normalized_text) % 256) / 127.5 - 1.0
            vector.append((pos_val + text_val) / 2.0)
        vector = vector[: self.dimension]

        # L2 normalize for cosine similarity
        norm = math.sqrt(sum(x * x for x in vector))
        if norm > 0:
            vector = [x / norm for x in vector]
        return vector

    def get_model_version(self) -> str:
        return "stub-v1.0"


class OpenAIVectorizer:
    """OpenAI embeddings vectorizer using text-embedding-3-small."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: AsyncOpenAI | None = None
        self._model_name = "text-embedding-3-small"

    def _get_client(self) -> AsyncOpenAI:
        """Lazy load OpenAI client."""
        if self._client is None:
            if not self.settings.openai_api_key:
                raise PermanentJobError(
                    "OPENAI_API_KEY is required for the openai vectorizer"
                )
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def vectorize(self, text: str) -> list[float]:
        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=self._model_name, input=text, encoding_format="float"
            )
        except openai.OpenAIError as e:
            raise openai_job_error("OpenAI API error", e) from e
        return response.data[0].embedding

    def get_model_version(self) -> str:
        return f"openai-{self._model_name}-v1.0"
