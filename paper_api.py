"""
Exam Paper API - Main Application
FastAPI application for the exam-paper platform.
Parents generate AI-written MCQ papers, assign them to children behind a
one-time code, collect answers and serve AI-generated explanations.
"""

from dotenv import load_dotenv
load_dotenv()

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from database.database import engine, Base, SessionLocal
from database.models import Paper, Role, User
from auth.security import hash_password
from routers import auth, papers, children, subjects, syllabuses
from services.errors import AppError
from services.explanation_cache import EXPLANATION_PENDING_TIMEOUT_MINUTES
from services.queue import queue_depth
from services.responses import error_response

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(message)s")
log = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@org.com")
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin")


def _seed_defaults():
    """Create the default admin if no admin exists."""
    db = SessionLocal()
    try:
        if db.query(User).filter(User.role == Role.ADMIN.value).count() == 0:
            admin = User(
                name="Admin",
                email=DEFAULT_ADMIN_EMAIL.lower(),
                hashed_password=hash_password(DEFAULT_ADMIN_PASSWORD),
                role=Role.ADMIN.value,
            )
            db.add(admin)
            db.commit()
            log.info(f"✓ Default admin created: {DEFAULT_ADMIN_EMAIL}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + seed defaults."""
    Base.metadata.create_all(bind=engine)
    _seed_defaults()
    yield


app = FastAPI(
    title="Exam Paper API",
    description="AI-generated question papers, child assignment with one-time codes, and cached explanations",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error envelope ────────────────────────────────────────────────────────────

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return error_response(exc.status_code, exc.message, exc.body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return error_response(400, "Invalid request", errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Something went wrong")


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(auth.router)          # /users/*
app.include_router(papers.router)        # /papers/*
app.include_router(children.router)      # /children/*
app.include_router(subjects.router)      # /subjects/*
app.include_router(syllabuses.router)    # /syllabuses/*


@app.get("/")
def root():
    return {
        "name": "Exam Paper API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "users": "/users",
            "papers": "/papers",
            "children": "/children",
            "subjects": "/subjects",
            "syllabuses": "/syllabuses",
        },
    }


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/explanations")
def explanation_health():
    """
    Background explanation batches.
    pending: answered papers whose batch is still inside the pending window
    stalled: answered papers past the window and still not flagged generated
    """
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=EXPLANATION_PENDING_TIMEOUT_MINUTES)
    db = SessionLocal()
    try:
        waiting = db.query(Paper).filter(
            Paper.is_deleted == False,
            Paper.answered_at.isnot(None),
            Paper.is_explanation_generated == False,
        )
        stalled = waiting.filter(Paper.answered_at < cutoff).count()
        pending = waiting.count() - stalled
    finally:
        db.close()

    return {
        "status": "degraded" if stalled else "healthy",
        "queue_depth": queue_depth(),
        "pending": pending,
        "stalled": stalled,
        "pending_timeout_minutes": EXPLANATION_PENDING_TIMEOUT_MINUTES,
    }
