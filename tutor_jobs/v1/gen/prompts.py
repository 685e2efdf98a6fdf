"""
Prompts for AI question generation, shared by the synchronous generator and
the batch request builder.
"""

import json
from typing import Any

SYSTEM_PROMPT = """You are an expert math tutor. Generate practice questions with perfect LaTeX formatting.

LaTeX rules:
- "questionLatex" is the primary field; use \\( \\) for inline math and \\[ \\] for display math
- "answerLatex" uses the same delimiters
- Plain text stays plain; only wrap actual math expressions

Examples:
- "Solve for \\(x\\): \\(3x - 7 = 14\\)"
- "Calculate \\(\\frac{2}{3} \\times \\frac{5}{4}\\)"

Output JSON with a "questions" array. Each question has:
- questionLatex: string
- answerLatex: string
- answerValue: string | number
- answerType: "exact" | "numeric" | "multiple_choice" | "expression"
- difficulty: "easy" | "medium" | "hard"
- hints: string[]
- solutionSteps: {step: string, latex?: string}[]
- tags: string[]"""

VARIANT_PROMPT = """You rewrite math practice questions into fresh variants that test the
same skill with different numbers or context. Keep the difficulty. Answer with a JSON
object holding a single question in the same shape you were given (questionLatex,
answerLatex, answerValue, answerType, difficulty, hints, solutionSteps, tags)."""

MAX_TOKENS = 4000
TEMPERATURE = 0.8


def build_user_prompt(
    topic_name: str,
    description: str | None,
    count: int,
    difficulty: str,
    avoid: list[str] | None = None,
) -> str:
    lines = [
        f'Generate {count} questions for "{topic_name}".',
        "",
        f"Description: {description or 'Practice questions'}",
        "",
        f"All questions should be {difficulty} difficulty.",
    ]
    if avoid:
        lines += ["", "Do not repeat these existing questions:"]
        lines += [f"- {text}" for text in avoid[:20]]
    lines += ["", f'Return JSON with "questions" array of exactly {count} questions.']
    return "\n".join(lines)


def build_chat_request(
    model: str,
    topic_name: str,
    description: str | None,
    count: int,
    difficulty: str,
    avoid: list[str] | None = None,
) -> dict[str, Any]:
    """Body of a ``/v1/chat/completions`` request in JSON mode."""
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_user_prompt(topic_name, description, count, difficulty, avoid),
            },
        ],
        "response_format": {"type": "json_object"},
        "max_tokens": MAX_TOKENS,
        "temperature": TEMPERATURE,
    }


def parse_questions_content(content: str | None) -> list[dict[str, Any]]:
    """Extract the ``questions`` array from a JSON-mode completion."""
    if not content:
        raise ValueError("Empty completion content")
    parsed = json.loads(content)
    if isinstance(parsed, list):
        return parsed
    questions = parsed.get("questions")
    if not isinstance(questions, list):
        raise ValueError("Completion did not contain a 'questions' array")
    return questions
