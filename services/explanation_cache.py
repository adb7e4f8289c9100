"""
Explanation cache.

Per (paper, question number) an explanation moves Absent -> Pending -> Cached.
There are two ways in:

  - get_or_generate(): on-demand lookup. A cache hit is returned as-is and
    never reaches the provider. On a miss the explanation is generated inline,
    unless a background batch for that question is still in flight, in which
    case ExplanationPending is raised.
  - generate_batch(): the background pass scheduled after answers are
    submitted. Per-question failures are logged and skipped, and the paper's
    is_explanation_generated flag is set once the pass ends.

There are no in-process locks. Two writers racing on the same question both
insert; the (document, question_number) unique constraint rejects the loser,
which re-reads and returns the winner's row.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.models import ExplanationEntry, Paper, QuestionExplanation
from generation.explanations import ExplanationGenerator
from generation.gpt_client import ContentProvider
from generation.schemas import BatchReport, ExplanationResult
from services.errors import ExplanationPending, NotFound, QuestionNotFound

log = logging.getLogger("generation.pipeline")

EXPLANATION_PENDING_TIMEOUT_MINUTES = int(os.getenv("EXPLANATION_PENDING_TIMEOUT_MINUTES", "10"))

WHOLE_PAPER = 0


def _now():
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _as_question_number(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def answered_numbers(paper: Paper) -> List[int]:
    """Distinct positive question numbers in the stored answers; digit strings count."""
    numbers = set()
    for answer in paper.answers or []:
        number = _as_question_number(answer.get("questionNumber")) if isinstance(answer, dict) else None
        if number is not None and number > 0:
            numbers.add(number)
    return sorted(numbers)


def entry_to_dict(entry: ExplanationEntry, paper_id: int) -> dict:
    return {
        "questionId": paper_id,
        "questionNumber": entry.question_number,
        "explanation": entry.explanation,
        "references": entry.references or {"videos": [], "articles": [], "books": []},
        "generatedAt": entry.generated_at,
    }


class ExplanationCache:
    def __init__(
        self,
        db: Session,
        provider: ContentProvider,
        generator: Optional[ExplanationGenerator] = None,
        pending_timeout: timedelta = timedelta(minutes=EXPLANATION_PENDING_TIMEOUT_MINUTES),
    ):
        self.db = db
        self.generator = generator or ExplanationGenerator(provider)
        self.pending_timeout = pending_timeout

    # ── Reads ─────────────────────────────────────────────────────────────────

    def load_paper(self, paper_id: int) -> Paper:
        paper = (
            self.db.query(Paper)
            .filter(Paper.id == paper_id, Paper.is_deleted == False)
            .first()
        )
        if not paper:
            raise NotFound("Question not found.")
        return paper

    def lookup(self, paper_id: int, question_number: int) -> Optional[ExplanationEntry]:
        return (
            self.db.query(ExplanationEntry)
            .join(QuestionExplanation, ExplanationEntry.document_id == QuestionExplanation.id)
            .filter(
                QuestionExplanation.paper_id == paper_id,
                QuestionExplanation.is_deleted == False,
                ExplanationEntry.question_number == question_number,
            )
            .first()
        )

    def document(self, paper_id: int) -> QuestionExplanation:
        doc = (
            self.db.query(QuestionExplanation)
            .filter(QuestionExplanation.paper_id == paper_id, QuestionExplanation.is_deleted == False)
            .first()
        )
        if not doc:
            raise NotFound("No explanations found for this question.")
        return doc

    @staticmethod
    def find_question(paper: Paper, question_number: Optional[int]) -> Optional[dict]:
        if question_number is None:
            return None
        for question in paper.questions or []:
            if question.get("questionNumber") == question_number:
                return question
        raise QuestionNotFound(question_number)

    def is_pending(self, paper: Paper, question_number: Optional[int]) -> bool:
        """
        True while a background batch that covers this question has been
        scheduled and has not finished. A batch older than pending_timeout is
        treated as stalled so callers can fall back to inline generation.
        """
        if question_number is None or paper.is_explanation_generated or paper.answered_at is None:
            return False
        if question_number not in answered_numbers(paper):
            return False
        return _now() - _as_utc(paper.answered_at) < self.pending_timeout

    # ── Writes ────────────────────────────────────────────────────────────────

    def _document_for_write(self, paper_id: int) -> QuestionExplanation:
        doc = self.db.query(QuestionExplanation).filter(QuestionExplanation.paper_id == paper_id).first()
        if doc:
            return doc
        doc = QuestionExplanation(paper_id=paper_id)
        self.db.add(doc)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            doc = self.db.query(QuestionExplanation).filter(QuestionExplanation.paper_id == paper_id).first()
            if doc is None:
                raise
            return doc
        self.db.refresh(doc)
        return doc

    def store(self, paper_id: int, question_number: int, result: ExplanationResult) -> Tuple[ExplanationEntry, bool]:
        """Append one entry. Returns (entry, created); created is False when another writer won."""
        doc = self._document_for_write(paper_id)
        entry = ExplanationEntry(
            document_id=doc.id,
            question_number=question_number,
            explanation=result.explanation,
            references=result.references.model_dump(),
            generated_at=_now(),
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.lookup(paper_id, question_number)
            if winner is None:
                raise
            log.info(f"[EXPLAIN] paper={paper_id} q={question_number}: lost insert race, using existing entry")
            return winner, False
        self.db.refresh(entry)
        return entry, True

    # ── Entry points ──────────────────────────────────────────────────────────

    async def get_or_generate(
        self,
        paper_id: int,
        question_number: Optional[int] = None,
        allow_pending: bool = True,
    ) -> Tuple[ExplanationEntry, bool]:
        """
        Return (entry, created) for one question, or the whole paper when
        question_number is None.

        Raises NotFound / QuestionNotFound, ExplanationPending (only when
        allow_pending), or GenerationFailed once provider retries run out.
        """
        key = WHOLE_PAPER if question_number is None else question_number
        hit = self.lookup(paper_id, key)
        if hit is not None:
            return hit, False

        paper = self.load_paper(paper_id)
        question = self.find_question(paper, question_number)
        if allow_pending and self.is_pending(paper, question_number):
            raise ExplanationPending()

        result = await self.generator.explain(paper, question)
        return self.store(paper.id, key, result)

    async def generate_batch(
        self,
        paper_id: int,
        question_numbers: Iterable[int],
        answer_revision: Optional[int] = None,
    ) -> BatchReport:
        """
        Generate every missing explanation in `question_numbers`, then flag the
        paper. The flag is only written if no newer submission has happened
        since this batch was scheduled (answer_revision unchanged).
        """
        paper = self.load_paper(paper_id)
        report = BatchReport(paper_id=paper_id)

        for number in sorted(set(question_numbers)):
            try:
                if self.lookup(paper_id, number) is not None:
                    report.cached.append(number)
                    continue
                question = self.find_question(paper, number)
                result = await self.generator.explain(paper, question)
                _, created = self.store(paper_id, number, result)
                (report.generated if created else report.cached).append(number)
            except Exception as e:
                self.db.rollback()
                log.error(f"[EXPLAIN] paper={paper_id} q={number}: skipped - {e}")
                report.failed.append(number)

        query = self.db.query(Paper).filter(Paper.id == paper_id)
        if answer_revision is not None:
            query = query.filter(Paper.answer_revision == answer_revision)
        updated = query.update({Paper.is_explanation_generated: True}, synchronize_session=False)
        self.db.commit()
        if not updated:
            log.info(f"[EXPLAIN] paper={paper_id}: newer submission exists, flag left for the next batch")

        log.info(
            f"[EXPLAIN] paper={paper_id} batch done - generated={report.generated} "
            f"cached={report.cached} failed={report.failed}"
        )
        return report
