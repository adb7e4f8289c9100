"""
User authentication router.
Registration, email/password login for parents/admins, and OTP login for
children. Also provides the bearer-token dependencies used by every other
router.
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth.policy import Principal
from auth.security import create_access_token, decode_token, hash_password, verify_password
from database.database import get_db
from database.models import Role, User
from database.schemas import ChildLoginRequest, LoginRequest, RegisterRequest, UserResponse, dump
from services.errors import Conflict, Forbidden, InvalidRequest, Unauthorized
from services.otp import OtpGate
from services.responses import success_response

log = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@org.com")

router = APIRouter(prefix="/users", tags=["users"])


# ─── Dependencies ──────────────────────────────────────────────────────────────

security_scheme = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> Principal:
    if credentials is None:
        raise Unauthorized("Authorization token missing")
    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise Unauthorized()
    return Principal(
        id=str(payload["sub"]),
        role=str(payload.get("role") or ""),
        claims=payload,
    )


def require_roles(*roles: str):
    """Dependency factory: reject principals whose role is not listed."""
    allowed = {r.value if isinstance(r, Role) else r for r in roles}

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise Forbidden("Access denied")
        return principal

    return dependency


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.post("/register", status_code=201)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    email = request.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("Email already exists")

    role = Role.ADMIN.value if email == DEFAULT_ADMIN_EMAIL.lower() else Role.PARENT.value
    user = User(
        name=request.name.strip(),
        email=email,
        hashed_password=hash_password(request.password),
        role=role,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Email already exists")
    db.refresh(user)
    log.info(f"Registered user {user.id} ({role})")
    return success_response(201, "User registered successfully!", dump(UserResponse, user))


@router.post("/login")
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate and return a bearer token carrying role and quota claims."""
    user = (
        db.query(User)
        .filter(User.email == request.email.strip().lower(), User.is_deleted == False)
        .first()
    )
    if not user or not verify_password(request.password, user.hashed_password):
        raise InvalidRequest("Invalid credentials")

    claims = {"sub": str(user.id), "role": user.role, "email": user.email, "name": user.name}
    if user.child_limit is not None:
        claims["childLimit"] = user.child_limit
    if user.topic_limit is not None:
        claims["topicLimit"] = user.topic_limit
    token = create_access_token(claims)

    return success_response(200, "Login successful", {
        "token": token,
        "token_type": "bearer",
        "user": dump(UserResponse, user),
    })


@router.post("/childLogin/{child_id}")
def child_login(child_id: str, request: ChildLoginRequest, db: Session = Depends(get_db)):
    """Redeem a paper's OTP for a 1-hour token scoped to this child and paper."""
    if not child_id or request.question_id in (None, "") or request.otp in (None, ""):
        raise InvalidRequest("Missing required fields.")

    gate = OtpGate(db)
    child = gate.redeem(request.question_id, child_id, request.otp)
    token = gate.issue_child_token(child, int(request.question_id))

    return success_response(200, "Login successful", {
        "token": token,
        "user": {"id": child.id, "name": child.name, "grade": child.grade},
    })
