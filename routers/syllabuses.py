"""
Syllabus API endpoints
Author-owned catalog of syllabus names (CBSE, ICSE, ...)
"""

from database.models import Syllabus
from routers.catalog import build_catalog_router

router = build_catalog_router(Syllabus, "/syllabuses", "Syllabus", "Syllabuses")
