"""
pollvault/routes/__init__.py
Route registration. Mounted under /api by pollvault.main.
"""
from fastapi import APIRouter

from pollvault.routes import hackathons, integrity, participation, polls, votes

router = APIRouter()

router.include_router(hackathons.router)
router.include_router(polls.router)
router.include_router(votes.router)
router.include_router(integrity.router)
router.include_router(participation.router)
