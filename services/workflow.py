"""
Paper lifecycle: authored -> assigned -> answered -> explained.

"explained" is observable through is_explanation_generated and is not
exclusive: resubmitting answers re-enters "answered", resets the flag and
schedules a new batch. Cached explanations are kept across resubmissions
since questions never change after generation.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from database.models import Child, Paper
from services.errors import InvalidRequest, NotFound
from services.explanation_cache import answered_numbers
from services.otp import generate_otp

log = logging.getLogger(__name__)


class PaperState(str, enum.Enum):
    AUTHORED = "authored"
    ASSIGNED = "assigned"
    ANSWERED = "answered"
    EXPLAINED = "explained"


def paper_state(paper: Paper) -> PaperState:
    if paper.answered_at is not None:
        return PaperState.EXPLAINED if paper.is_explanation_generated else PaperState.ANSWERED
    if paper.children_id is not None:
        return PaperState.ASSIGNED
    return PaperState.AUTHORED


def schedule_explanations(paper_id: int, question_numbers: List[int], answer_revision: int) -> None:
    from services.tasks import generate_explanations_task

    generate_explanations_task(paper_id, question_numbers, answer_revision)


class PaperWorkflow:
    def __init__(
        self,
        db: Session,
        scheduler: Callable[[int, List[int], int], Any] = schedule_explanations,
    ):
        self.db = db
        self.scheduler = scheduler

    def load(self, paper_id: Any) -> Paper:
        try:
            paper_id = int(paper_id)
        except (TypeError, ValueError):
            raise InvalidRequest("Invalid Paper")
        paper = self.db.query(Paper).filter(Paper.id == paper_id, Paper.is_deleted == False).first()
        if not paper:
            raise InvalidRequest("Invalid Paper")
        return paper

    def assign(self, paper_id: Any, child_id: Any, url: Optional[str] = None) -> Paper:
        """Bind the paper to a child and mint a fresh OTP (any old code dies)."""
        paper = self.load(paper_id)
        child = None
        if isinstance(child_id, int) and not isinstance(child_id, bool):
            child = self.db.query(Child).filter(Child.id == child_id, Child.is_deleted == False).first()
        if child is None:
            raise NotFound("Child not found.")

        paper.children_id = child.id
        paper.url = url
        paper.assigned_at = datetime.now(timezone.utc)
        paper.otp = generate_otp()
        self.db.commit()
        self.db.refresh(paper)
        log.info(f"Paper {paper.id} assigned to child {child.id}")
        return paper

    def submit_answers(
        self,
        paper_id: Any,
        answers: Any,
        question_number: Optional[int] = None,
    ) -> Tuple[Paper, List[int]]:
        """
        Replace the answers wholesale, clear the OTP, reset the explanation
        flag, then hand the distinct answered question numbers (plus
        question_number, when given) to the background scheduler.

        Returns (paper, scheduled question numbers).
        """
        if not isinstance(answers, list) or not all(isinstance(a, dict) for a in answers):
            raise InvalidRequest("answers must be a list of objects")
        paper = self.load(paper_id)

        paper.answers = answers
        paper.otp = None
        paper.is_explanation_generated = False
        paper.answered_at = datetime.now(timezone.utc)
        paper.answer_revision = (paper.answer_revision or 0) + 1
        self.db.commit()
        self.db.refresh(paper)

        numbers = answered_numbers(paper)
        if isinstance(question_number, int) and question_number > 0 and question_number not in numbers:
            numbers = sorted(numbers + [question_number])

        try:
            self.scheduler(paper.id, numbers, paper.answer_revision)
        except Exception:
            # Answers are already stored; the pending timeout lets readers
            # fall back to inline generation if the batch never runs.
            log.exception(f"Could not schedule explanations for paper {paper.id}")
        return paper, numbers

    @staticmethod
    def state(paper: Paper) -> PaperState:
        return paper_state(paper)
