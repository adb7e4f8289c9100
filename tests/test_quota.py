import pytest

from conftest import make_child, make_user
from services.errors import QuotaExceeded
from services.quota import (
    DEFAULT_LIMIT,
    QuotaEnforcer,
    normalize_topics,
    resolve_child_limit,
    resolve_limit,
    resolve_topic_limit,
)


class Record:
    def __init__(self, child_limit=None, topic_limit=None):
        self.child_limit = child_limit
        self.topic_limit = topic_limit


def test_record_wins_over_claim():
    assert resolve_child_limit({"childLimit": 10}, Record(child_limit=2)) == 2
    assert resolve_topic_limit({"topicLimit": 10}, Record(topic_limit=3)) == 3


def test_claim_used_when_record_has_no_limit():
    assert resolve_child_limit({"childLimit": 4}, Record()) == 4
    assert resolve_child_limit({"childLimit": 4}, None) == 4


def test_default_when_nothing_usable():
    assert resolve_child_limit(None, None) == DEFAULT_LIMIT
    assert resolve_topic_limit({"topicLimit": "5"}, Record(topic_limit=-1)) == DEFAULT_LIMIT


@pytest.mark.parametrize("value", [-1, "3", 2.5, True, None])
def test_invalid_limits_are_ignored(value):
    assert resolve_limit(value, None, default=7) == 7


def test_zero_is_a_valid_limit():
    assert resolve_limit(0, 5) == 0


def test_normalize_topics_trims_and_dedupes():
    assert normalize_topics([" algebra ", "", "  ", "algebra", "geometry", 3]) == ["algebra", "geometry"]


def test_child_quota_blocks_once_limit_reached(db):
    owner = make_user(db, child_limit=2)
    quota = QuotaEnforcer(db)

    make_child(db, owner, name="One")
    assert quota.enforce_child_quota(owner.id) == 2
    # Checking does not consume anything
    assert quota.enforce_child_quota(owner.id) == 2
    make_child(db, owner, name="Two")

    with pytest.raises(QuotaExceeded) as exc_info:
        quota.enforce_child_quota(owner.id)
    assert exc_info.value.current == 2
    assert exc_info.value.limit == 2
    assert exc_info.value.status_code == 403


def test_zero_child_limit_always_fails(db):
    owner = make_user(db, child_limit=0)
    with pytest.raises(QuotaExceeded):
        QuotaEnforcer(db).enforce_child_quota(owner.id, {"childLimit": 50})


def test_deleted_children_do_not_count(db):
    owner = make_user(db, child_limit=1)
    child = make_child(db, owner)
    child.is_deleted = True
    db.commit()

    assert QuotaEnforcer(db).enforce_child_quota(owner.id) == 1


def test_owner_without_record_uses_claim(db):
    assert QuotaEnforcer(db).enforce_child_quota("external-42", {"childLimit": 3}) == 3


def test_topic_quota_rejects_three_topics_with_limit_two():
    with pytest.raises(QuotaExceeded) as exc_info:
        QuotaEnforcer.enforce_topic_quota(["algebra", " geometry ", "fractions", ""], 2)
    assert exc_info.value.current == 3
    assert exc_info.value.limit == 2


def test_topic_quota_counts_after_normalizing():
    assert QuotaEnforcer.enforce_topic_quota(["algebra", "algebra ", " "], 1) == ["algebra"]
