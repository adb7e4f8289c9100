"""
Pydantic schemas for the paper generation pipeline.

Field names on stored objects stay camelCase (questionNumber, correctAnswer)
because that is the shape persisted on papers and returned to clients;
Python code uses the snake_case attribute names.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


# ─── Input ─────────────────────────────────────────────────────────────────────

class PaperSpec(BaseModel):
    """Curriculum request for one paper. Checked by QuestionGenerator.generate."""
    class_name: Optional[str] = None
    subject: Optional[str] = None
    syllabus: Optional[str] = None
    chapter_from: Optional[str] = None
    chapter_to: Optional[str] = None
    language: Optional[str] = None
    count: int = 0


# ─── Questions ─────────────────────────────────────────────────────────────────

class GeneratedQuestion(BaseModel):
    """One validated MCQ, as stored in Paper.questions."""
    model_config = ConfigDict(populate_by_name=True)

    question_number: int = Field(..., alias="questionNumber", ge=1)
    question: str
    choices: Dict[str, str]
    correct_answer: str = Field(..., alias="correctAnswer")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


# ─── Explanations ──────────────────────────────────────────────────────────────

class References(BaseModel):
    videos: List[str] = Field(default_factory=list)
    articles: List[str] = Field(default_factory=list)
    books: List[str] = Field(default_factory=list)


class ExplanationResult(BaseModel):
    """Parsed provider output for one explanation request."""
    explanation: str
    references: References = Field(default_factory=References)


class ExplanationOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: int = Field(..., alias="questionId")
    question_number: int = Field(..., alias="questionNumber")
    explanation: str
    references: References
    generated_at: Optional[datetime] = Field(None, alias="generatedAt")


class BatchReport(BaseModel):
    """Outcome of one background explanation pass over a paper."""
    paper_id: int
    generated: List[int] = Field(default_factory=list)
    cached: List[int] = Field(default_factory=list)
    failed: List[int] = Field(default_factory=list)
