"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts

Client-facing keys follow the existing API: snake_case for the curriculum
fields the frontend posts (chapter_from, no_of_question, class), camelCase
for everything else (questionId, childId, isExplanationGenerated).
"""

from pydantic import AliasChoices, BaseModel, Field, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime


# ==========================================
# USER SCHEMAS
# ==========================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class ChildLoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: Optional[Any] = Field(None, alias="questionId")
    otp: Optional[Any] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    name: str
    email: str
    role: str
    child_limit: Optional[int] = Field(None, serialization_alias="childLimit")
    topic_limit: Optional[int] = Field(None, serialization_alias="topicLimit")
    created_at: Optional[datetime] = Field(None, serialization_alias="createdAt")


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


# ==========================================
# CHILD SCHEMAS
# ==========================================

class ChildCreate(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: str = Field(..., min_length=1, max_length=255)
    age: int = Field(..., ge=0)
    grade: str = Field(..., min_length=1, max_length=50, validation_alias=AliasChoices("grade", "class"))
    topics: List[str] = Field(default_factory=list)


class ChildUpdate(BaseModel):
    """All fields optional; topics are re-checked against the child's topic limit"""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    age: Optional[int] = Field(None, ge=0)
    grade: Optional[str] = Field(None, min_length=1, max_length=50, validation_alias=AliasChoices("grade", "class"))
    topics: Optional[List[str]] = None


class ChildSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    grade: str


class ChildResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    age: int
    grade: str
    topics: List[str] = Field(default_factory=list)
    topic_limit: int = Field(..., serialization_alias="topicLimit")
    parent: str
    owner_id: Optional[int] = Field(None, serialization_alias="ownerId")
    created_at: Optional[datetime] = Field(None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(None, serialization_alias="updatedAt")


# ==========================================
# PAPER SCHEMAS
# ==========================================

class PaperCreate(BaseModel):
    """
    Create request. Every field is optional at the schema level so the
    router can report all missing fields in one message.
    """
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    subject: Optional[str] = None
    syllabus: Optional[str] = None
    chapter_from: Optional[str] = None
    chapter_to: Optional[str] = None
    language: Optional[str] = None
    no_of_question: Optional[int] = None
    class_name: Optional[str] = Field(None, alias="class")
    topics: List[str] = Field(default_factory=list)
    file: Optional[str] = None


class PaperUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    subject: Optional[str] = None
    syllabus: Optional[str] = None
    chapter_from: Optional[str] = None
    chapter_to: Optional[str] = None
    language: Optional[str] = None
    class_name: Optional[str] = Field(None, alias="class")
    url: Optional[str] = None
    topics: Optional[List[str]] = None


class AnswerSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: int = Field(..., alias="questionId")
    answers: List[Dict[str, Any]]
    question_number: Optional[int] = Field(None, alias="questionNumber", ge=1)


class AssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    child_id: int = Field(..., alias="childId")
    url: Optional[str] = None


class PaperResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject: str
    syllabus: Optional[str] = None
    chapter_from: Optional[str] = None
    chapter_to: Optional[str] = None
    language: Optional[str] = None
    class_name: Optional[str] = Field(None, serialization_alias="class")
    no_of_question: int
    author_id: str = Field(..., serialization_alias="authorId")
    author: Optional[UserSummary] = None
    file: Optional[str] = None
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    answers: List[Dict[str, Any]] = Field(default_factory=list)
    children_id: Optional[int] = Field(None, serialization_alias="childrenId")
    child: Optional[ChildSummary] = Field(None, serialization_alias="children")
    topics: List[str] = Field(default_factory=list)
    topic_limit: int = Field(..., serialization_alias="topicLimit")
    child_limit: int = Field(..., serialization_alias="childLimit")
    otp: Optional[int] = None
    url: Optional[str] = None
    is_explanation_generated: bool = Field(..., serialization_alias="isExplanationGenerated")
    assigned_at: Optional[datetime] = Field(None, serialization_alias="assignedAt")
    answered_at: Optional[datetime] = Field(None, serialization_alias="answeredAt")
    created_at: Optional[datetime] = Field(None, serialization_alias="createdAt")


# ==========================================
# CATALOG SCHEMAS
# ==========================================

class CatalogCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class CatalogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    author_id: str = Field(..., serialization_alias="author")
    created_at: Optional[datetime] = Field(None, serialization_alias="createdAt")


def dump(schema, obj) -> dict:
    """ORM object -> client dict using the schema's serialization aliases"""
    return schema.model_validate(obj).model_dump(by_alias=True)
