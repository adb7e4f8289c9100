"""
Paper API endpoints
Generate, list, assign, answer and explain question papers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth.policy import AuthorizationPolicy, Principal, get_policy
from database.database import get_db
from database.models import Child, Paper, Role
from database.schemas import AnswerSubmission, AssignRequest, PaperCreate, PaperResponse, PaperUpdate, dump
from generation.gpt_client import get_provider
from generation.question_generator import QuestionGenerator
from generation.schemas import PaperSpec
from routers.auth import get_current_principal, require_roles
from services.errors import Forbidden, GenerationFailed, InvalidRequest, NotFound
from services.explanation_cache import ExplanationCache, entry_to_dict
from services.otp import OtpGate, generate_otp
from services.quota import QuotaEnforcer, resolve_child_limit, resolve_topic_limit
from services.responses import page_window, paginate, success_response
from services.workflow import PaperWorkflow, paper_state

log = logging.getLogger(__name__)

router = APIRouter(prefix="/papers", tags=["papers"])

authors_only = require_roles(Role.PARENT, Role.ADMIN, Role.SUBADMIN)

# (request field, client-facing name) in the order they are reported
REQUIRED_FIELDS = [
    ("subject", "subject"),
    ("syllabus", "syllabus"),
    ("chapter_from", "chapter_from"),
    ("chapter_to", "chapter_to"),
    ("language", "language"),
    ("no_of_question", "no_of_question"),
    ("class_name", "class"),
]


# ─── Helpers ───────────────────────────────────────────────────────────────────

def _paper_out(paper: Paper, principal: Principal) -> dict:
    """Paper as JSON. The OTP is only shown to authors; a child has to get it from them."""
    data = dump(PaperResponse, paper)
    if principal.role == Role.CHILD.value:
        data.pop("otp", None)
    data["state"] = paper_state(paper).value
    return data


def _load(db: Session, paper_id: int) -> Paper:
    paper = db.query(Paper).filter(Paper.id == paper_id, Paper.is_deleted == False).first()
    if not paper:
        raise NotFound("Paper not found")
    return paper


def _require_reader(policy: AuthorizationPolicy, principal: Principal, paper: Paper) -> None:
    """Authors read their papers; a child reads only the paper its token was issued for."""
    if principal.role == Role.CHILD.value:
        if str(principal.claims.get("paper_id")) != str(paper.id):
            raise Forbidden("Unauthorized access")
        policy.require(principal, paper.children_id)
    else:
        policy.require(principal, paper.author_id)


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == 0


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.post("", status_code=201)
async def create_paper(
    request: PaperCreate,
    principal: Principal = Depends(authors_only),
    db: Session = Depends(get_db),
):
    """
    Generate a new paper.
    Missing fields and topic quota are checked before the provider is called;
    nothing is stored unless generation succeeds.
    """
    missing = [name for field, name in REQUIRED_FIELDS if _is_blank(getattr(request, field))]
    if missing:
        raise InvalidRequest(f"The following fields are required: {', '.join(missing)}")

    quota = QuotaEnforcer(db)
    record = quota.owner_record(principal.id)
    topic_limit = resolve_topic_limit(principal.claims, record)
    topics = quota.enforce_topic_quota(request.topics, topic_limit)

    spec = PaperSpec(
        class_name=request.class_name,
        subject=request.subject,
        syllabus=request.syllabus,
        chapter_from=request.chapter_from,
        chapter_to=request.chapter_to,
        language=request.language,
        count=request.no_of_question,
    )
    try:
        questions = await QuestionGenerator(get_provider()).generate(spec)
    except GenerationFailed as e:
        log.error(f"Paper generation failed for author={principal.id}: {e} (cause: {e.cause!r})")
        raise GenerationFailed(cause=e.cause or e) from e

    paper = Paper(
        subject=request.subject.strip(),
        syllabus=request.syllabus.strip(),
        chapter_from=request.chapter_from.strip(),
        chapter_to=request.chapter_to.strip(),
        language=request.language.strip(),
        class_name=request.class_name.strip(),
        no_of_question=request.no_of_question,
        author_id=principal.id,
        author_user_id=record.id if record else None,
        file=request.file,
        questions=[q.to_document() for q in questions],
        answers=[],
        topics=topics,
        topic_limit=topic_limit,
        child_limit=resolve_child_limit(principal.claims, record),
        otp=generate_otp(),
    )
    db.add(paper)
    db.commit()
    db.refresh(paper)
    log.info(f"Paper {paper.id} created with {len(questions)} questions")
    return success_response(201, "Paper created successfully", _paper_out(paper, principal))


@router.get("")
def list_papers(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: str = "",
    principal: Principal = Depends(get_current_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Newest first. Authors see their own papers, a child only the paper its token was issued for."""
    page, limit = page_window(page, limit)
    query = db.query(Paper).filter(Paper.is_deleted == False)

    if principal.role == Role.CHILD.value:
        query = query.filter(
            Paper.children_id == principal.user_id,
            Paper.id == _as_int(principal.claims.get("paper_id")),
        )
    elif not policy.sees_everything(principal):
        query = query.filter(Paper.author_id == principal.id)

    search = search.strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Paper.subject.ilike(pattern),
            Paper.syllabus.ilike(pattern),
            Paper.language.ilike(pattern),
            Paper.chapter_from.ilike(pattern),
            Paper.chapter_to.ilike(pattern),
        ))

    total = query.count()
    papers = (
        query.order_by(Paper.created_at.desc(), Paper.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return success_response(
        200,
        "Papers fetched successfully",
        [_paper_out(p, principal) for p in papers],
        paginate(page, limit, total),
    )


@router.patch("/answer", status_code=201)
def submit_answers(
    request: AnswerSubmission,
    principal: Principal = Depends(get_current_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """
    Replace the paper's answers and queue explanation generation for every
    answered question. With a huey consumer running the
    request never waits on the batch.
    """
    workflow = PaperWorkflow(db)
    paper = workflow.load(request.question_id)
    _require_reader(policy, principal, paper)

    paper, scheduled = workflow.submit_answers(paper.id, request.answers, request.question_number)
    db.refresh(paper)
    data = _paper_out(paper, principal)
    data["scheduledExplanations"] = scheduled
    return success_response(201, "Paper updated successfully", data)


@router.post("/assign", status_code=201)
def assign_paper(
    request: AssignRequest,
    question_id: int = Query(..., alias="questionId"),
    principal: Principal = Depends(authors_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    workflow = PaperWorkflow(db)
    paper = workflow.load(question_id)
    policy.require(principal, paper.author_id)

    child = db.query(Child).filter(Child.id == request.child_id, Child.is_deleted == False).first()
    if not child:
        raise NotFound("Child not found.")
    policy.require(principal, child.parent, "Child does not belong to you")

    paper = workflow.assign(paper.id, child.id, request.url)
    return success_response(201, "Assign Paper successfully", _paper_out(paper, principal))


@router.post("/generateQuestionOTP/{question_id}")
def rotate_otp(
    question_id: int,
    principal: Principal = Depends(authors_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    paper = _load(db, question_id)
    policy.require(principal, paper.author_id)
    otp = OtpGate(db).mint(paper.id)
    return success_response(200, "OTP generated successfully", {"questionId": paper.id, "otp": otp})


@router.get("/{question_id}/explanation")
async def get_explanation(
    question_id: int,
    question_number: Optional[int] = Query(None, alias="questionNumber", ge=1),
    principal: Principal = Depends(get_current_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """
    Cached explanation, or a freshly generated one. While the background
    batch for this question is still running this answers 404 (pending).
    """
    cache = ExplanationCache(db, get_provider())
    _require_reader(policy, principal, cache.load_paper(question_id))

    entry, created = await cache.get_or_generate(question_id, question_number)
    if created:
        return success_response(201, "Explanation generated and saved successfully", entry_to_dict(entry, question_id))
    return success_response(200, "Explanation retrieved successfully", entry_to_dict(entry, question_id))


@router.post("/{question_id}/explanation")
async def generate_explanation(
    question_id: int,
    question_number: Optional[int] = Query(None, alias="questionNumber", ge=1),
    principal: Principal = Depends(get_current_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Explicit on-demand generation: never answers pending, generates inline on a miss."""
    cache = ExplanationCache(db, get_provider())
    _require_reader(policy, principal, cache.load_paper(question_id))

    entry, created = await cache.get_or_generate(question_id, question_number, allow_pending=False)
    code = 201 if created else 200
    message = "Explanation generated and saved successfully" if created else "Explanation retrieved successfully"
    return success_response(code, message, entry_to_dict(entry, question_id))


@router.get("/{question_id}/explanations")
def list_explanations(
    question_id: int,
    principal: Principal = Depends(get_current_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    cache = ExplanationCache(db, get_provider())
    _require_reader(policy, principal, cache.load_paper(question_id))

    doc = cache.document(question_id)
    return success_response(200, "All explanations retrieved successfully", {
        "questionId": question_id,
        "totalExplanations": len(doc.entries),
        "explanations": [entry_to_dict(e, question_id) for e in doc.entries],
    })


@router.get("/{paper_id}")
def show_paper(
    paper_id: int,
    principal: Principal = Depends(get_current_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    paper = _load(db, paper_id)
    _require_reader(policy, principal, paper)
    return success_response(200, "Paper fetched successfully", _paper_out(paper, principal))


@router.put("/{paper_id}")
def update_paper(
    paper_id: int,
    request: PaperUpdate,
    principal: Principal = Depends(authors_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Descriptive fields only; generated questions are never edited."""
    paper = _load(db, paper_id)
    policy.require(principal, paper.author_id)

    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise InvalidRequest("No fields provided for update")
    if "topics" in updates:
        updates["topics"] = QuotaEnforcer.enforce_topic_quota(updates["topics"] or [], paper.topic_limit)
    for field, value in updates.items():
        setattr(paper, field, value)
    db.commit()
    db.refresh(paper)
    return success_response(200, "Paper updated successfully", _paper_out(paper, principal))


@router.delete("/{paper_id}")
def delete_paper(
    paper_id: int,
    principal: Principal = Depends(authors_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    paper = _load(db, paper_id)
    policy.require(principal, paper.author_id)
    paper.is_deleted = True
    db.commit()
    return success_response(200, "Paper deleted successfully!")
