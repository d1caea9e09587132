"""Tier catalogue API route.

GET /api/tiers/config - Tiers, pricing, limits and the feature-to-tier map
"""

from fastapi import APIRouter

from clinic_core.domain.tiers import tier_config

router = APIRouter()


@router.get("/config")
async def get_tier_config() -> dict:
    """Full tier catalogue for pricing and upgrade pages (public, read-only)."""
    return tier_config()
