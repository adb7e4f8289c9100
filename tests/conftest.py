import os
import tempfile

# Configure before any application module reads its settings
_DB_DIR = tempfile.mkdtemp(prefix="exam-paper-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["HUEY_IMMEDIATE"] = "true"
os.environ["PROVIDER_BASE_DELAY_SECONDS"] = "0"
os.environ["PROVIDER_MAX_DELAY_SECONDS"] = "0"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["ENFORCE_OWNERSHIP"] = "true"
os.environ.pop("CHILD_EDIT_WINDOW", None)

import asyncio
import json
import re
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from auth.security import create_access_token, hash_password
from database.database import Base, SessionLocal, engine
from database.models import Child, Paper, Role, User
from generation.gpt_client import ContentProvider, set_provider


# ─── Scripted provider ─────────────────────────────────────────────────────────

def mcq_items(count, first=1, keys="ABCD"):
    return [
        {
            "questionNumber": first + i,
            "question": f"What is {first + i} + {first + i}?",
            "choices": {k: f"{k} answer {first + i}" for k in keys},
            "correctAnswer": keys[0],
        }
        for i in range(count)
    ]


def mcq_json(count, first=1, keys="ABCD"):
    return json.dumps(mcq_items(count, first, keys))


def explanation_json(text="Because two plus two is four."):
    return json.dumps({
        "explanation": text,
        "references": {"videos": ["Addition basics"], "articles": [], "books": ["Maths Grade 8, ch. 1"]},
    })


_COUNT = re.compile(r"Generate exactly (\d+) multiple-choice questions")
_QUESTION = re.compile(r"QUESTION (\d+):")


def default_handler(prompt):
    """Valid MCQs for generation prompts, a per-question explanation otherwise."""
    count = _COUNT.search(prompt)
    if count:
        return mcq_json(int(count.group(1)))
    number = _QUESTION.search(prompt)
    return explanation_json(f"Explanation for question {number.group(1) if number else 'paper'}")


class FakeProvider(ContentProvider):
    """
    Returns scripted responses in order, or delegates to `handler(prompt)`.
    A response that is an exception instance is raised instead of returned.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.prompts = []

    @property
    def calls(self):
        return len(self.prompts)

    async def complete(self, prompt, system="", temperature=0.4, max_tokens=2048):
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        if self.responses:
            result = self.responses.pop(0)
        elif self.handler is not None:
            result = self.handler(prompt)
        else:
            raise RuntimeError("FakeProvider ran out of scripted responses")
        if isinstance(result, BaseException):
            raise result
        return result


# ─── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    set_provider(None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider():
    fake = FakeProvider(handler=default_handler)
    set_provider(fake)
    return fake


@pytest.fixture
def client(provider):
    from paper_api import app

    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ─── Builders ──────────────────────────────────────────────────────────────────

def make_user(db, email="parent@example.com", role=Role.PARENT.value, child_limit=None, topic_limit=None):
    user = User(
        name=email.split("@")[0].title(),
        email=email,
        hashed_password=hash_password("secret"),
        role=role,
        child_limit=child_limit,
        topic_limit=topic_limit,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_child(db, owner, name="Asha", grade="8", topics=None):
    child = Child(
        name=name,
        age=12,
        grade=grade,
        topics=topics or [],
        topic_limit=1,
        parent=str(owner.id),
        owner_id=owner.id,
    )
    db.add(child)
    db.commit()
    db.refresh(child)
    return child


def make_paper(db, author, count=3, answers=None, answered=False, child=None):
    paper = Paper(
        subject="Math",
        syllabus="CBSE",
        chapter_from="1",
        chapter_to="3",
        language="English",
        class_name="8",
        no_of_question=count,
        author_id=str(author.id),
        author_user_id=author.id,
        questions=mcq_items(count),
        answers=answers or [],
        children_id=child.id if child else None,
        topics=[],
        answered_at=datetime.now(timezone.utc) if answered else None,
    )
    db.add(paper)
    db.commit()
    db.refresh(paper)
    return paper


def auth_header(user, **claims):
    token = create_access_token({"sub": str(user.id), "role": user.role, **claims})
    return {"Authorization": f"Bearer {token}"}
