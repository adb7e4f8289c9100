"""
Shared endpoints for author-owned catalog entries (subjects, syllabuses).
Each resource module builds its router with build_catalog_router().
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.policy import AuthorizationPolicy, Principal, get_policy
from database import crud
from database.database import get_db
from database.models import Role
from database.schemas import CatalogCreate, CatalogResponse, dump
from routers.auth import require_roles
from services.errors import NotFound
from services.responses import page_window, paginate, success_response


def build_catalog_router(model, prefix: str, label: str, plural: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[plural.lower()])
    authors_only = require_roles(Role.PARENT, Role.ADMIN, Role.SUBADMIN)

    def load(db: Session, entry_id: int, principal: Principal, policy: AuthorizationPolicy):
        entry = crud.get_entry(db, model, entry_id)
        if not entry:
            raise NotFound(f"{label} not found")
        policy.require(principal, entry.author_id)
        return entry

    @router.post("", status_code=201)
    def create_entry(
        request: CatalogCreate,
        principal: Principal = Depends(authors_only),
        db: Session = Depends(get_db),
    ):
        entry = crud.create_entry(db, model, request.name, principal.id)
        return success_response(201, f"{label} created successfully", dump(CatalogResponse, entry))

    @router.get("")
    def list_entries(
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search: str = "",
        principal: Principal = Depends(authors_only),
        policy: AuthorizationPolicy = Depends(get_policy),
        db: Session = Depends(get_db),
    ):
        page, limit = page_window(page, limit)
        owner = None if policy.sees_everything(principal) else principal.id
        items, total = crud.list_entries(
            db, model, search=search.strip(), author_id=owner, skip=(page - 1) * limit, limit=limit,
        )
        if not items:
            return success_response(200, f"No {plural.lower()} found", [], paginate(page, limit, total))
        return success_response(
            200,
            f"{plural} fetched successfully",
            [dump(CatalogResponse, e) for e in items],
            paginate(page, limit, total),
        )

    @router.get("/{entry_id}")
    def show_entry(
        entry_id: int,
        principal: Principal = Depends(authors_only),
        policy: AuthorizationPolicy = Depends(get_policy),
        db: Session = Depends(get_db),
    ):
        entry = load(db, entry_id, principal, policy)
        return success_response(200, f"{label} fetched successfully", dump(CatalogResponse, entry))

    @router.put("/{entry_id}")
    def update_entry(
        entry_id: int,
        request: CatalogCreate,
        principal: Principal = Depends(authors_only),
        policy: AuthorizationPolicy = Depends(get_policy),
        db: Session = Depends(get_db),
    ):
        entry = crud.rename_entry(db, load(db, entry_id, principal, policy), request.name)
        return success_response(200, f"{label} updated successfully", dump(CatalogResponse, entry))

    @router.delete("/{entry_id}")
    def delete_entry(
        entry_id: int,
        principal: Principal = Depends(authors_only),
        policy: AuthorizationPolicy = Depends(get_policy),
        db: Session = Depends(get_db),
    ):
        crud.soft_delete(db, load(db, entry_id, principal, policy))
        return success_response(200, f"{label} deleted successfully")

    return router
