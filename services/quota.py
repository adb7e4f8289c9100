"""
Quota enforcement for child and topic limits.

Limit resolution, highest precedence first:
  1. the persisted record's limit field (integer >= 0)
  2. the caller's token claim (integer >= 0)
  3. DEFAULT_LIMIT

Server-side state wins so a forged token cannot raise a quota; the default
covers users that have no persisted record (e.g. first federated login).

Quota checks are read-then-write and therefore best-effort under concurrency.
"""

from typing import Any, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from database.models import Child, User
from services.errors import QuotaExceeded

DEFAULT_LIMIT = 1


def _valid_limit(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def resolve_limit(record_value: Any, claim_value: Any, default: int = DEFAULT_LIMIT) -> int:
    if _valid_limit(record_value):
        return record_value
    if _valid_limit(claim_value):
        return claim_value
    return default


def resolve_child_limit(claims: Optional[Mapping[str, Any]], record: Optional[Any]) -> int:
    return resolve_limit(
        getattr(record, "child_limit", None),
        (claims or {}).get("childLimit"),
    )


def resolve_topic_limit(claims: Optional[Mapping[str, Any]], record: Optional[Any]) -> int:
    return resolve_limit(
        getattr(record, "topic_limit", None),
        (claims or {}).get("topicLimit"),
    )


def normalize_topics(topics: Optional[Iterable[Any]]) -> List[str]:
    """Trim, drop empties and duplicates, keep first-seen order."""
    seen = []
    for topic in topics or []:
        if not isinstance(topic, str):
            continue
        topic = topic.strip()
        if topic and topic not in seen:
            seen.append(topic)
    return seen


class QuotaEnforcer:
    def __init__(self, db: Session):
        self.db = db

    def owner_record(self, owner_id: Any) -> Optional[User]:
        try:
            user_id = int(owner_id)
        except (TypeError, ValueError):
            return None
        return self.db.query(User).filter(User.id == user_id, User.is_deleted == False).first()

    def count_children(self, owner_id: int) -> int:
        return (
            self.db.query(Child)
            .filter(Child.owner_id == owner_id, Child.is_deleted == False)
            .count()
        )

    def enforce_child_quota(self, owner_id: Any, claims: Optional[Mapping[str, Any]] = None) -> int:
        """
        Fail with QuotaExceeded iff the owner already has `limit` live children.
        A limit of 0 always fails. Returns the resolved limit.
        """
        record = self.owner_record(owner_id)
        limit = resolve_child_limit(claims, record)
        current = self.count_children(record.id) if record else self.count_children_by_claim(owner_id)
        if current >= limit:
            raise QuotaExceeded(current, limit, "Your create child limit is over.")
        return limit

    def count_children_by_claim(self, owner_id: Any) -> int:
        return (
            self.db.query(Child)
            .filter(Child.parent == str(owner_id), Child.is_deleted == False)
            .count()
        )

    @staticmethod
    def enforce_topic_quota(topics: Optional[Iterable[Any]], limit: int) -> List[str]:
        """Return the normalized topics, or raise QuotaExceeded if there are more than `limit`."""
        normalized = normalize_topics(topics)
        if len(normalized) > limit:
            raise QuotaExceeded(len(normalized), limit, f"You can select at most {limit} topic(s).")
        return normalized
