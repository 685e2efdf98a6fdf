"""
Material extractors: turn an uploaded worksheet or notes file into a
structured summary of topics, concepts, terms and equations.
"""

import json
from typing import Any
from urllib.parse import urlparse

import httpx
import openai
from openai import AsyncOpenAI

from tutor_jobs.config.settings import Settings
from tutor_jobs.v1.core.exceptions import (
    PermanentJobError,
    TransientJobError,
    openai_job_error,
)

ANALYSIS_PROMPT = """You are a math curriculum analyzer. Extract and categorize mathematical content from the provided text.

Output JSON with this structure:
{
  "topics": ["list of main topics covered"],
  "concepts": ["list of specific concepts taught"],
  "keyTerms": ["important mathematical terms"],
  "equations": ["key equations in LaTeX format"],
  "summary": "brief summary of the content"
}"""

VISION_PROMPT = (
    "Extract all mathematical content, equations, problems, and text from this "
    "image. Format equations in LaTeX."
)


def normalize_analysis(raw: dict[str, Any]) -> dict[str, Any]:
    """Coerce an analysis object into the extractor result shape."""

    def _strings(value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(v) for v in value if v]

    return {
        "topics": _strings(raw.get("topics")),
        "concepts": _strings(raw.get("concepts")),
        "key_terms": _strings(raw.get("key_terms", raw.get("keyTerms"))),
        "equations": _strings(raw.get("equations")),
        "summary": str(raw.get("summary") or ""),
    }


class StubMaterialExtractor:
    """Offline extractor that derives a summary from the file name."""

    async def extract(self, file_url: str, file_type: str) -> dict[str, Any]:
        name = urlparse(file_url).path.rsplit("/", 1)[-1] or "material"
        stem = name.rsplit(".", 1)[0].replace("_", " ").replace("-", " ").strip()
        topic = stem.title() or "Material"
        return {
            "topics": [topic],
            "concepts": [],
            "key_terms": [w for w in stem.split() if len(w) > 3],
            "equations": [],
            "summary": f"{topic} ({file_type})",
            "extracted_length": 0,
        }


class OpenAIMaterialExtractor:
    """
    Vision and chat based extractor.

    Images are transcribed with the vision model, text files are downloaded,
    and the resulting text is analyzed in JSON mode. PDFs are not parsed; the
    analysis runs on a reference to the file.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        """Lazy load OpenAI client."""
        if self._client is None:
            if not self.settings.openai_api_key:
                raise PermanentJobError(
                    "OPENAI_API_KEY is required for the openai material extractor"
                )
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def _read_text(self, file_url: str, file_type: str) -> str:
        if file_type == "application/pdf":
            return f"[PDF content from {file_url}]"

        if file_type.startswith("image/"):
            client = self._get_client()
            try:
                response = await client.chat.completions.create(
                    model=self.settings.batch_model,
                    messages=[
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": VISION_PROMPT},
                                {"type": "image_url", "image_url": {"url": file_url}},
                            ],
                        }
                    ],
                    max_tokens=4000,
                )
            except openai.OpenAIError as e:
                raise openai_job_error("Vision extraction failed", e) from e
            return response.choices[0].message.content or ""

        try:
            async with httpx.AsyncClient(timeout=30.0) as http:
                response = await http.get(file_url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (404, 410):
                raise PermanentJobError(f"Material not found at {file_url}") from e
            raise TransientJobError(f"Failed to download material: {e}") from e
        except httpx.HTTPError as e:
            raise TransientJobError(f"Failed to download material: {e}") from e
        return response.text

    async def extract(self, file_url: str, file_type: str) -> dict[str, Any]:
        text = await self._read_text(file_url, file_type)
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.settings.batch_model,
                messages=[
                    {"role": "system", "content": ANALYSIS_PROMPT},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                max_tokens=2000,
            )
        except openai.OpenAIError as e:
            raise openai_job_error("Material analysis failed", e) from e

        try:
            raw = json.loads(response.choices[0].message.content or "{}")
        except ValueError as e:
            raise TransientJobError(f"Unusable analysis: {e}") from e

        analysis = normalize_analysis(raw)
        analysis["extracted_length"] = len(text)
        return analysis
