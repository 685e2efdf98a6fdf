from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, SmallInteger, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tutor_jobs.infra.database import Base, UTCDateTime, utcnow


class QuestionOrigin:
    AI_GENERATED = "ai_generated"
    AI_VARIANT = "ai_variant"


class GeneratedQuestion(Base):
    """Question bank entry produced by a job.

    ``(source_job_id, source_key)`` identifies the job output slot the row was
    created from; handlers check it before inserting so re-execution never
    duplicates questions.
    """

    __tablename__ = "questions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    workspace_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    topic_id: Mapped[str | None] = mapped_column(Text)
    origin: Mapped[str] = mapped_column(Text, nullable=False, default=QuestionOrigin.AI_GENERATED)

    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_latex: Mapped[str | None] = mapped_column(Text)
    answer: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    answer_type: Mapped[str] = mapped_column(Text, nullable=False, default="exact")
    difficulty: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=3)
    hints: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    solution_steps: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    embedding: Mapped[list[float] | None] = mapped_column(JSON)
    embedding_model: Mapped[str | None] = mapped_column(Text)
    embedding_hash: Mapped[str | None] = mapped_column(Text)

    parent_question_id: Mapped[UUID | None] = mapped_column(Uuid)
    source_job_id: Mapped[UUID | None] = mapped_column(Uuid)
    source_key: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[UUID | None] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("source_job_id", "source_key", name="uq_questions_source"),
        CheckConstraint("difficulty BETWEEN 1 AND 5", name="questions_difficulty_check"),
        Index("ix_questions_workspace_topic", "workspace_id", "topic_id"),
    )

    def embedding_text(self) -> str:
        """Text that embeddings are computed from."""
        parts = [self.prompt_text, self.prompt_latex or "", " ".join(self.tags or [])]
        return " ".join(p for p in parts if p).strip()

    def as_render_dict(self) -> dict[str, Any]:
        return {
            "prompt_text": self.prompt_text,
            "prompt_latex": self.prompt_latex,
            "answer": self.answer,
            "hints": self.hints,
            "solution_steps": self.solution_steps,
        }
