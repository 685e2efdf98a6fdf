"""
Question drafts returned by generators, before they become question rows.
"""

import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DIFFICULTY_LEVELS = {"easy": 2, "medium": 3, "hard": 4}

_TEXT_COMMANDS = re.compile(r"\\(?:text|textbf|textit|mathrm|mathbf|mbox)\{([^}]*)\}")
_FRACTION = re.compile(r"\\frac\{([^}]*)\}\{([^}]*)\}")
_SQRT = re.compile(r"\\sqrt\{([^}]*)\}")
_DELIMITERS = re.compile(r"\\\[|\\\]|\\\(|\\\)|\$\$?")
_COMMAND = re.compile(r"\\[a-zA-Z]+")


def strip_latex(text: str) -> str:
    """Plain-text rendering of a LaTeX prompt, used for search and dedup."""
    text = _DELIMITERS.sub("", text)
    text = _TEXT_COMMANDS.sub(r"\1", text)
    text = _FRACTION.sub(r"(\1)/(\2)", text)
    text = _SQRT.sub(r"sqrt(\1)", text)
    text = text.replace("\\times", "×").replace("\\div", "÷").replace("\\cdot", "·")
    text = _COMMAND.sub("", text)
    text = text.replace("{", "").replace("}", "")
    return re.sub(r"\s+", " ", text).strip()


class QuestionDraft(BaseModel):
    """One generated question; accepts the camelCase keys LLMs are prompted with."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    question_latex: str = Field(
        validation_alias=AliasChoices("question_latex", "questionLatex"), min_length=1
    )
    answer_latex: str | None = Field(
        default=None, validation_alias=AliasChoices("answer_latex", "answerLatex")
    )
    answer_value: str | int | float | None = Field(
        default=None, validation_alias=AliasChoices("answer_value", "answerValue")
    )
    answer_type: str = Field(
        default="exact", validation_alias=AliasChoices("answer_type", "answerType")
    )
    difficulty: int = 3
    hints: list[str] = Field(default_factory=list)
    solution_steps: list[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices("solution_steps", "solutionSteps"),
    )
    tags: list[str] = Field(default_factory=list)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _difficulty_level(cls, value: Any) -> int:
        if isinstance(value, str):
            if value.isdigit():
                value = int(value)
            else:
                return DIFFICULTY_LEVELS.get(value.lower(), 3)
        if isinstance(value, (int, float)):
            return min(5, max(1, int(value)))
        return 3

    @property
    def prompt_text(self) -> str:
        return strip_latex(self.question_latex)

    def answer_json(self) -> dict[str, Any]:
        value = self.answer_value if self.answer_value is not None else self.answer_latex
        return {"value": value, "latex": self.answer_latex}
