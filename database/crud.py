"""
CRUD operations for the catalog entities (subjects, syllabuses)
Both share the same shape, so every helper takes the model class.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple, Type, Union

from database import models
from services.errors import Conflict

CatalogModel = Union[Type[models.Subject], Type[models.Syllabus]]


def create_entry(db: Session, model: CatalogModel, name: str, author_id: str):
    """Create a catalog entry; duplicate names become Conflict"""
    entry = model(name=name.strip(), author_id=str(author_id))
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"{model.__name__} '{name.strip()}' already exists")
    db.refresh(entry)
    return entry


def get_entry(db: Session, model: CatalogModel, entry_id: int):
    """Get a live entry by ID"""
    return db.query(model).filter(model.id == entry_id, model.is_deleted == False).first()


def list_entries(
    db: Session,
    model: CatalogModel,
    search: str = "",
    author_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List, int]:
    """Live entries, newest first, with optional name search and owner filter"""
    query = db.query(model).filter(model.is_deleted == False)
    if author_id is not None:
        query = query.filter(model.author_id == str(author_id))
    if search:
        query = query.filter(model.name.ilike(f"%{search}%"))
    total = query.count()
    items = query.order_by(model.created_at.desc(), model.id.desc()).offset(skip).limit(limit).all()
    return items, total


def rename_entry(db: Session, entry, name: str):
    entry.name = name.strip()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"{type(entry).__name__} '{name.strip()}' already exists")
    db.refresh(entry)
    return entry


def soft_delete(db: Session, entry) -> None:
    entry.is_deleted = True
    db.commit()
