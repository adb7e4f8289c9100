"""
Child API endpoints
CRUD for child accounts, gated by the owner's child quota and topic quota.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import policy as auth_policy
from auth.policy import AuthorizationPolicy, EditWindow, Principal, get_policy
from database.database import get_db
from database.models import Child, Role
from database.schemas import ChildCreate, ChildResponse, ChildUpdate, dump
from routers.auth import require_roles
from services.errors import Conflict, InvalidRequest, NotFound
from services.quota import QuotaEnforcer, resolve_topic_limit
from services.responses import page_window, paginate, success_response

log = logging.getLogger(__name__)

router = APIRouter(prefix="/children", tags=["children"])

owners_only = require_roles(Role.PARENT, Role.ADMIN, Role.SUBADMIN)

DUPLICATE_CHILD = "Child with the same name already exists for this parent"


def get_edit_window() -> EditWindow:
    return auth_policy.child_edit_window


def _owned_query(db: Session, principal: Principal, policy: AuthorizationPolicy):
    query = db.query(Child).filter(Child.is_deleted == False)
    if not policy.sees_everything(principal):
        query = query.filter(Child.parent == principal.id)
    return query


def _load(db: Session, child_id: int, principal: Principal, policy: AuthorizationPolicy) -> Child:
    child = db.query(Child).filter(Child.id == child_id, Child.is_deleted == False).first()
    if not child:
        raise NotFound("Child not found")
    policy.require(principal, child.parent)
    return child


@router.post("", status_code=201)
def create_child(
    request: ChildCreate,
    principal: Principal = Depends(owners_only),
    db: Session = Depends(get_db),
):
    """
    Create a child account for the caller.
    Both quotas are checked before anything is written.
    """
    quota = QuotaEnforcer(db)
    quota.enforce_child_quota(principal.id, principal.claims)
    record = quota.owner_record(principal.id)
    topic_limit = resolve_topic_limit(principal.claims, record)
    topics = quota.enforce_topic_quota(request.topics, topic_limit)

    child = Child(
        name=request.name.strip(),
        age=request.age,
        grade=request.grade.strip(),
        topics=topics,
        topic_limit=topic_limit,
        parent=principal.id,
        owner_id=record.id if record else None,
    )
    db.add(child)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(DUPLICATE_CHILD)
    db.refresh(child)
    log.info(f"Child {child.id} created for owner {principal.id}")
    return success_response(201, "Child account created successfully", dump(ChildResponse, child))


@router.get("")
def list_children(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: str = "",
    principal: Principal = Depends(owners_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    page, limit = page_window(page, limit)
    query = _owned_query(db, principal, policy)
    search = search.strip()
    if search:
        query = query.filter(Child.name.ilike(f"%{search}%"))

    total = query.count()
    children = query.order_by(Child.created_at.desc(), Child.id.desc()).offset((page - 1) * limit).limit(limit).all()
    if not children:
        return success_response(200, "No children accounts found", [], paginate(page, limit, total))
    return success_response(
        200,
        "Children fetched successfully",
        [dump(ChildResponse, c) for c in children],
        paginate(page, limit, total),
    )


@router.get("/classes/list")
def list_classes(
    principal: Principal = Depends(owners_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Distinct grades across the caller's children"""
    rows = _owned_query(db, principal, policy).with_entities(Child.grade).distinct().order_by(Child.grade).all()
    return success_response(200, "Classes fetched successfully", [grade for (grade,) in rows])


@router.get("/{child_id}")
def show_child(
    child_id: int,
    principal: Principal = Depends(owners_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    child = _load(db, child_id, principal, policy)
    return success_response(200, "Child fetched successfully", dump(ChildResponse, child))


@router.put("/{child_id}")
def update_child(
    child_id: int,
    request: ChildUpdate,
    principal: Principal = Depends(owners_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    window: EditWindow = Depends(get_edit_window),
    db: Session = Depends(get_db),
):
    window.require_open(date.today())
    child = _load(db, child_id, principal, policy)

    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise InvalidRequest("No fields provided for update")
    if "topics" in updates:
        updates["topics"] = QuotaEnforcer.enforce_topic_quota(updates["topics"], child.topic_limit)
    for field, value in updates.items():
        setattr(child, field, value.strip() if isinstance(value, str) else value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(DUPLICATE_CHILD)
    db.refresh(child)
    return success_response(200, "Child updated successfully", dump(ChildResponse, child))


@router.delete("/{child_id}")
def delete_child(
    child_id: int,
    principal: Principal = Depends(owners_only),
    policy: AuthorizationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    child = _load(db, child_id, principal, policy)
    child.is_deleted = True
    db.commit()
    return success_response(200, "Child deleted successfully!")
