"""
Worksheet PDF rendering with reportlab.

- Letter pages, 50pt margins, Helvetica
- Questions numbered in the given order, word-wrapped to the page width
- Optional hints under each question and an answer key on a separate page
"""

import io
from typing import Any

from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

PAGE_WIDTH, PAGE_HEIGHT = letter
MARGIN = 50
LINE_HEIGHT = 14
QUESTION_SPACING = 30
BODY_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"


def _answer_text(answer: Any) -> str:
    if isinstance(answer, dict):
        value = answer.get("value")
        if value is None:
            value = answer.get("latex")
        return "" if value is None else str(value)
    return "" if answer is None else str(answer)


class _Cursor:
    """Tracks the write position and starts new pages as needed."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.y = PAGE_HEIGHT - MARGIN

    def new_page(self):
        self.c.showPage()
        self.y = PAGE_HEIGHT - MARGIN

    def ensure_space(self, needed: float):
        if self.y - needed < MARGIN:
            self.new_page()

    def text(self, text: str, x: float, font: str, size: float):
        max_width = PAGE_WIDTH - MARGIN - x
        for line in simpleSplit(text, font, size, max_width) or [""]:
            self.ensure_space(LINE_HEIGHT)
            self.c.setFont(font, size)
            self.c.drawString(x, self.y, line)
            self.y -= LINE_HEIGHT


class ReportLabRenderer:
    """Renders question lists into worksheet PDFs."""

    def render(
        self,
        title: str,
        questions: list[dict[str, Any]],
        include_answers: bool,
        include_hints: bool,
    ) -> bytes:
        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=letter)
        c.setTitle(title)
        cursor = _Cursor(c)

        cursor.text(title, MARGIN, BOLD_FONT, 18)
        cursor.y -= LINE_HEIGHT

        for number, question in enumerate(questions, start=1):
            cursor.ensure_space(LINE_HEIGHT * 3)
            cursor.text(f"{number}. {question.get('prompt_text', '')}", MARGIN, BODY_FONT, 11)
            if include_hints:
                for hint in question.get("hints") or []:
                    cursor.text(f"Hint: {hint}", MARGIN + 20, BODY_FONT, 9)
            cursor.y -= QUESTION_SPACING

        if include_answers:
            cursor.new_page()
            cursor.text("Answer Key", MARGIN, BOLD_FONT, 16)
            cursor.y -= LINE_HEIGHT
            for number, question in enumerate(questions, start=1):
                cursor.text(
                    f"{number}. {_answer_text(question.get('answer'))}", MARGIN, BODY_FONT, 11
                )

        c.showPage()
        c.save()
        return buf.getvalue()
