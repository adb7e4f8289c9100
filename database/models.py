"""
SQLAlchemy models for the exam-paper platform

Users own children and author papers. A paper embeds its generated questions
and submitted answers as JSON; explanations live in their own tables so that
(paper, question number) can carry a real unique constraint.

Nothing is hard-deleted: every entity has an is_deleted flag.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Text, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
import enum
from database.database import Base


# JSONB on Postgres, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB, "postgresql")


class Role(str, enum.Enum):
    """Roles carried in the `role` token claim"""
    PARENT = "parent"
    ADMIN = "admin"
    CHILD = "child"
    SUBADMIN = "subadmin"


# ==========================================
# AUTH: USERS
# ==========================================

class User(Base):
    """
    Parent / admin / subadmin account.
    child_limit and topic_limit are nullable: when unset, the quota layer
    falls back to the token claim and then to the default.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=Role.PARENT.value)
    child_limit = Column(Integer, nullable=True)
    topic_limit = Column(Integer, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ==========================================
# CHILDREN
# ==========================================

class Child(Base):
    """
    A child account created by a parent.
    `parent` is the raw owner claim (denormalized); `owner_id` is the
    authoritative owning user and is what quotas count against.
    """
    __tablename__ = "children"
    __table_args__ = (
        UniqueConstraint("name", "parent", name="uq_children_name_parent"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    age = Column(Integer, nullable=False)
    grade = Column(String(50), nullable=False)
    topics = Column(JSONType, nullable=False, default=list)
    topic_limit = Column(Integer, nullable=False, default=1)
    parent = Column(String(64), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User")

    def __repr__(self):
        return f"<Child(id={self.id}, name='{self.name}', owner={self.owner_id})>"


# ==========================================
# PAPERS
# ==========================================

class Paper(Base):
    """
    A generated question paper.

    questions: [{questionNumber, question, choices: {A..D}, correctAnswer}]
    answers:   [{questionNumber, option, ...}] (replaced wholesale on submit)
    otp:       single-use 5-digit code gating child access, NULL when consumed
    """
    __tablename__ = "papers"

    id = Column(Integer, primary_key=True, index=True)
    subject = Column(String(255), nullable=False)
    syllabus = Column(String(255), nullable=True)
    chapter_from = Column(String(100), nullable=True)
    chapter_to = Column(String(100), nullable=True)
    language = Column(String(100), nullable=True)
    class_name = Column(String(50), nullable=True)
    no_of_question = Column(Integer, nullable=False, default=0)

    author_id = Column(String(64), nullable=False, index=True)  # raw claim
    author_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    file = Column(String(500), nullable=True)

    questions = Column(JSONType, nullable=False, default=list)
    answers = Column(JSONType, nullable=False, default=list)
    children_id = Column(Integer, ForeignKey("children.id", ondelete="SET NULL"), nullable=True, index=True)
    topics = Column(JSONType, nullable=False, default=list)
    topic_limit = Column(Integer, nullable=False, default=1)
    child_limit = Column(Integer, nullable=False, default=1)

    otp = Column(Integer, nullable=True)
    url = Column(String(500), nullable=True)
    is_explanation_generated = Column(Boolean, default=False, nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    answered_at = Column(DateTime(timezone=True), nullable=True)
    answer_revision = Column(Integer, nullable=False, default=0)  # bumped on every submission

    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    author = relationship("User", foreign_keys=[author_user_id])
    child = relationship("Child", foreign_keys=[children_id])
    explanation = relationship("QuestionExplanation", back_populates="paper", uselist=False)

    def __repr__(self):
        return f"<Paper(id={self.id}, subject='{self.subject}', author='{self.author_id}')>"


# ==========================================
# EXPLANATIONS
# ==========================================

class QuestionExplanation(Base):
    """Explanation document: exactly one per paper."""
    __tablename__ = "question_explanations"

    id = Column(Integer, primary_key=True, index=True)
    paper_id = Column(Integer, ForeignKey("papers.id", ondelete="CASCADE"), unique=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    paper = relationship("Paper", back_populates="explanation")
    entries = relationship(
        "ExplanationEntry",
        back_populates="document",
        order_by="ExplanationEntry.question_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<QuestionExplanation(id={self.id}, paper={self.paper_id})>"


class ExplanationEntry(Base):
    """
    One generated explanation. The unique constraint is what makes
    concurrent generation for the same question collapse to one row.
    question_number 0 holds the whole-paper explanation.
    """
    __tablename__ = "explanation_entries"
    __table_args__ = (
        UniqueConstraint("document_id", "question_number", name="uq_explanation_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("question_explanations.id", ondelete="CASCADE"), nullable=False, index=True)
    question_number = Column(Integer, nullable=False)
    explanation = Column(Text, nullable=False)
    references = Column("reference_links", JSONType, nullable=False, default=dict)  # {videos, articles, books}
    generated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    document = relationship("QuestionExplanation", back_populates="entries")

    def __repr__(self):
        return f"<ExplanationEntry(document={self.document_id}, q={self.question_number})>"


# ==========================================
# CATALOG: SUBJECT / SYLLABUS
# ==========================================

class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    author_id = Column(String(64), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Subject(id={self.id}, name='{self.name}')>"


class Syllabus(Base):
    __tablename__ = "syllabuses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    author_id = Column(String(64), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Syllabus(id={self.id}, name='{self.name}')>"
