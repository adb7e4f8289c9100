"""
Subject API endpoints
Author-owned catalog of subject names
"""

from database.models import Subject
from routers.catalog import build_catalog_router

router = build_catalog_router(Subject, "/subjects", "Subject", "Subjects")
