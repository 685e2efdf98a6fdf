from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from pydantic import BaseModel

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
@dataclass(frozen=True)
class JobContext:
    """Identity of the job being executed, handed to every handler."""

    job_id: UUID
    job_type: str
    tenant_id: UUID
    creator_id: UUID | None
    attempts: int
    max_attempts: int


class JobHandler(Protocol):
    """Protocol for handlers executed by the dispatcher.

    ``payload_model`` is validated at enqueue time; ``handle`` receives the
    parsed model. Handlers run at-least-once and must deduplicate their own
    side effects.
    """

    payload_model: type[BaseModel]

    async def handle(
        self,
        session: Any,  # AsyncSession
        ctx: JobContext,
        payload: Any,
    ) -> dict[str, Any] | None:
        """
        Execute a job.

        Args:
            session: Database session; writes commit together with completion
            ctx: Job identity and tenant scope
            payload: Instance of ``payload_model``

        Returns:
            Optional result dictionary stored on the completed job
        """
        ...


@runtime_checkable
class BatchJobHandler(Protocol):
    """Handler whose work is delegated to the external batch API."""

    payload_model: type[BaseModel]
    item_model: type[BaseModel]

    def build_request(self, custom_id: str, item: Any) -> dict[str, Any]:
        """Serialize one item into a batch request line."""
        ...

    async def materialize(
        self,
        session: Any,
        ctx: JobContext,
        index: int,
        item: Any,
        result: Any,  # BatchItemResult
    ) -> list[str]:
        """Create domain entities for one completed item, returning their ids."""
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers, keyed by job type."""

    def __init__(self):
        super().__init__("Job")

    def is_batch_type(self, name: str) -> bool:
        return name in self and isinstance(self.get(name), BatchJobHandler)


# Question Generator Registry - AI question authoring
class QuestionGenerator(Protocol):
    """Protocol for question generators."""

    async def generate(
        self,
        topic_name: str,
        description: str | None,
        count: int,
        difficulty: str,
        avoid: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Generate practice questions.

        Returns raw question dicts in the shape of ``QuestionDraft``.
        """
        ...

    async def generate_variant(self, question: dict[str, Any]) -> dict[str, Any]:
        """Generate one variant of an existing question."""
        ...


class QuestionGeneratorRegistry(Registry[QuestionGenerator]):
    """Registry for question generators (stub, openai)."""

    def __init__(self):
        super().__init__("QuestionGenerator")


# Vectorizer Registry - compute embeddings
class Vectorizer(Protocol):
    """Protocol for embedding vectorizers."""

    async def vectorize(self, text: str) -> list[float]:
        """Compute embedding vector for text."""
        ...

    def get_model_version(self) -> str:
        """Get the model version identifier."""
        ...


class VectorizerRegistry(Registry[Vectorizer]):
    """Registry for vectorizers (stub, openai)."""

    def __init__(self):
        super().__init__("Vectorizer")


# Material Extractor Registry - uploaded worksheets and notes
class MaterialExtractor(Protocol):
    """Protocol for source material extractors."""

    async def extract(self, file_url: str, file_type: str) -> dict[str, Any]:
        """
        Extract study content from an uploaded file.

        Returns:
        {
            "topics": list[str],
            "concepts": list[str],
            "key_terms": list[str],
            "equations": list[str],
            "summary": str
        }
        """
        ...


class MaterialExtractorRegistry(Registry[MaterialExtractor]):
    """Registry for material extractors (stub, openai)."""

    def __init__(self):
        super().__init__("MaterialExtractor")


# PDF Renderer Registry - printable worksheets
class PdfRenderer(Protocol):
    """Protocol for worksheet renderers."""

    def render(
        self,
        title: str,
        questions: list[dict[str, Any]],
        include_answers: bool,
        include_hints: bool,
    ) -> bytes:
        """Render questions into a PDF document."""
        ...


class PdfRendererRegistry(Registry[PdfRenderer]):
    """Registry for PDF renderers (reportlab)."""

    def __init__(self):
        super().__init__("PdfRenderer")


# Global registry instances (singletons)
job_registry = JobRegistry()
question_generator_registry = QuestionGeneratorRegistry()
vectorizer_registry = VectorizerRegistry()
material_extractor_registry = MaterialExtractorRegistry()
pdf_renderer_registry = PdfRendererRegistry()
