"""
codemark/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from codemark.routes import projects, submissions, code_files, activities

router = APIRouter()

router.include_router(projects.router)
router.include_router(submissions.router)
router.include_router(code_files.router)
router.include_router(activities.router)
