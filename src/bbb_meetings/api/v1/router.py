"""V1 API router -- aggregates all v1 endpoint routers under /api."""

from __future__ import annotations

from fastapi import APIRouter

from src.bbb_meetings.api.v1 import meetings, meetups, recordings

router = APIRouter(prefix="/api")

router.include_router(recordings.router)
router.include_router(meetups.router)
router.include_router(meetings.router)
