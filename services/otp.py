"""
Single-use numeric codes gating a child's access to an assigned paper.

A code is 5 digits drawn uniformly from 10000-99999 and stored on the paper.
Minting overwrites any unconsumed code; there is no expiry, the only ways a
code dies are redemption and re-mint. Redemption is one conditional UPDATE so
two concurrent logins with the same code cannot both succeed.
"""

import logging
import secrets
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from auth.security import create_access_token
from database.models import Child, Paper, Role
from services.errors import InvalidOtp, NotFound

log = logging.getLogger(__name__)

OTP_MIN = 10000
OTP_MAX = 99999
CHILD_TOKEN_TTL = timedelta(hours=1)


def generate_otp() -> int:
    return OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1)


def _as_code(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class OtpGate:
    def __init__(self, db: Session):
        self.db = db

    def mint(self, paper_id: int) -> int:
        code = generate_otp()
        updated = (
            self.db.query(Paper)
            .filter(Paper.id == paper_id, Paper.is_deleted == False)
            .update({Paper.otp: code}, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            raise NotFound("Question not found.")
        self.db.commit()
        return code

    def verify(self, paper_id: int, child_id: int, code: Any) -> bool:
        """Read-only check; does not consume the code."""
        supplied = _as_code(code)
        if supplied is None:
            return False
        paper = self.db.query(Paper).filter(Paper.id == paper_id, Paper.is_deleted == False).first()
        return (
            paper is not None
            and paper.otp is not None
            and paper.otp == supplied
            and paper.children_id == child_id
        )

    def consume(self, paper_id: int) -> None:
        self.db.query(Paper).filter(Paper.id == paper_id).update({Paper.otp: None}, synchronize_session=False)
        self.db.commit()

    def redeem(self, paper_id: Any, child_id: Any, code: Any) -> Child:
        """
        Verify and consume in one step. Every failure raises the same InvalidOtp
        so callers cannot tell a wrong code from a wrong child or paper.
        """
        supplied = _as_code(code)
        try:
            paper_id, child_id = int(paper_id), int(child_id)
        except (TypeError, ValueError):
            raise InvalidOtp()
        if supplied is None:
            raise InvalidOtp()

        child = self.db.query(Child).filter(Child.id == child_id, Child.is_deleted == False).first()
        if child is None:
            raise InvalidOtp()

        consumed = (
            self.db.query(Paper)
            .filter(
                Paper.id == paper_id,
                Paper.is_deleted == False,
                Paper.children_id == child_id,
                Paper.otp.isnot(None),
                Paper.otp == supplied,
            )
            .update({Paper.otp: None}, synchronize_session=False)
        )
        self.db.commit()
        if consumed != 1:
            log.info(f"OTP rejected for paper={paper_id} child={child_id}")
            raise InvalidOtp()
        return child

    @staticmethod
    def issue_child_token(child: Child, paper_id: int) -> str:
        return create_access_token(
            {"sub": str(child.id), "role": Role.CHILD.value, "paper_id": paper_id},
            expires_delta=CHILD_TOKEN_TTL,
        )
