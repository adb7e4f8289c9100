import pytest

from conftest import make_child, make_paper, make_user
from database.models import Paper
from services.errors import InvalidRequest, NotFound
from services.workflow import PaperState, PaperWorkflow


class RecordingScheduler:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def __call__(self, paper_id, numbers, revision):
        self.calls.append((paper_id, numbers, revision))
        if self.fail:
            raise ConnectionError("redis unavailable")


def test_lifecycle_states(db):
    owner = make_user(db)
    child = make_child(db, owner)
    paper = make_paper(db, owner)
    workflow = PaperWorkflow(db, scheduler=RecordingScheduler())
    assert workflow.state(paper) is PaperState.AUTHORED

    paper = workflow.assign(paper.id, child.id, url="https://example.com/p/1")
    assert workflow.state(paper) is PaperState.ASSIGNED
    assert paper.children_id == child.id
    assert paper.otp is not None
    assert paper.assigned_at is not None

    paper, _ = workflow.submit_answers(paper.id, [{"questionNumber": 1, "option": "A"}])
    assert workflow.state(paper) is PaperState.ANSWERED

    paper.is_explanation_generated = True
    db.commit()
    assert workflow.state(paper) is PaperState.EXPLAINED


def test_assign_rotates_the_code(db):
    owner = make_user(db)
    child = make_child(db, owner)
    paper = make_paper(db, owner)
    paper.otp = 11111
    db.commit()

    paper = PaperWorkflow(db).assign(paper.id, child.id)

    assert paper.assigned_at is not None
    assert 10000 <= paper.otp <= 99999


def test_assign_unknown_child(db):
    paper = make_paper(db, make_user(db))
    with pytest.raises(NotFound):
        PaperWorkflow(db).assign(paper.id, 999)


def test_submit_replaces_answers_and_schedules_distinct_numbers(db):
    owner = make_user(db)
    paper = make_paper(db, owner, count=5, answers=[{"questionNumber": 5, "option": "B"}])
    paper.otp = 12345
    paper.is_explanation_generated = True
    db.commit()
    scheduler = RecordingScheduler()

    paper, numbers = PaperWorkflow(db, scheduler=scheduler).submit_answers(
        paper.id,
        [
            {"questionNumber": 3, "option": "A"},
            {"questionNumber": 1, "option": "C"},
            {"questionNumber": 3, "option": "D"},
        ],
        question_number=4,
    )

    assert numbers == [1, 3, 4]
    assert [a["questionNumber"] for a in paper.answers] == [3, 1, 3]
    assert paper.otp is None
    assert paper.is_explanation_generated is False
    assert paper.answer_revision == 1
    assert scheduler.calls == [(paper.id, [1, 3, 4], 1)]


def test_resubmission_bumps_revision(db):
    paper = make_paper(db, make_user(db))
    scheduler = RecordingScheduler()
    workflow = PaperWorkflow(db, scheduler=scheduler)

    workflow.submit_answers(paper.id, [{"questionNumber": 1, "option": "A"}])
    paper, _ = workflow.submit_answers(paper.id, [{"questionNumber": 2, "option": "B"}])

    assert paper.answer_revision == 2
    assert [call[2] for call in scheduler.calls] == [1, 2]


def test_scheduler_failure_keeps_answers(db):
    paper = make_paper(db, make_user(db))

    paper, numbers = PaperWorkflow(db, scheduler=RecordingScheduler(fail=True)).submit_answers(
        paper.id, [{"questionNumber": 2, "option": "B"}]
    )

    db.expire_all()
    assert db.get(Paper, paper.id).answers == [{"questionNumber": 2, "option": "B"}]


def test_answers_must_be_objects(db):
    paper = make_paper(db, make_user(db))
    with pytest.raises(InvalidRequest):
        PaperWorkflow(db, scheduler=RecordingScheduler()).submit_answers(paper.id, ["A", "B"])


def test_unknown_paper_is_invalid(db):
    with pytest.raises(InvalidRequest):
        PaperWorkflow(db, scheduler=RecordingScheduler()).submit_answers(404, [])


def test_default_scheduler_runs_batch_inline_in_immediate_mode(db, provider):
    paper = make_paper(db, make_user(db), count=2)

    PaperWorkflow(db).submit_answers(paper.id, [{"questionNumber": 1, "option": "A"}])

    db.expire_all()
    stored = db.get(Paper, paper.id)
    assert stored.is_explanation_generated is True
    assert stored.explanation is not None
    assert [e.question_number for e in stored.explanation.entries] == [1]


def test_digit_string_question_numbers_are_scheduled(db):
    paper = make_paper(db, make_user(db), count=3)
    scheduler = RecordingScheduler()

    _, numbers = PaperWorkflow(db, scheduler=scheduler).submit_answers(
        paper.id, [{"questionNumber": "3", "option": "A"}, {"questionNumber": "1", "option": "B"}, {"questionNumber": "x"}]
    )

    assert numbers == [1, 3]
    assert scheduler.calls[0][1] == [1, 3]
