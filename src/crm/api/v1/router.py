"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm.api.v1 import announcements, companies, contacts, events, health, opportunities

router = APIRouter()

router.include_router(health.router)
router.include_router(companies.router)
router.include_router(contacts.router)
router.include_router(opportunities.router)
router.include_router(events.router)
router.include_router(announcements.router)
