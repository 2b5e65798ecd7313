"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.referral_hub.api.v1 import patients, referrals, settings

router = APIRouter()

router.include_router(patients.router)
router.include_router(referrals.router)
router.include_router(settings.router)
