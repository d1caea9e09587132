"""Clinic onboarding, subscription and feature discovery routes.

POST /api/clinics                                  - Create a clinic
GET  /api/clinics/{clinic_id}/subscription         - Current tier and add-on
PUT  /api/clinics/{clinic_id}/subscription/tier    - Upgrade or downgrade
PUT  /api/clinics/{clinic_id}/subscription/intelligence - Toggle INTELLIGENCE add-on
GET  /api/clinics/{clinic_id}/features             - Enabled features
GET  /api/clinics/{clinic_id}/features/{feature}   - Single feature check
"""

from fastapi import APIRouter, Depends, HTTPException

from clinic_core.api.schemas.clinics import (
    ClinicCreate,
    FeatureAccessResponse,
    FeaturesResponse,
    IntelligenceAddonRequest,
    SubscriptionResponse,
    TierChangeRequest,
)
from clinic_core.db.base import get_session_factory
from clinic_core.domain.tiers import Feature, can_access, enabled_features, required_tier
from clinic_core.services.subscription_service import SubscriptionService

router = APIRouter()


def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(get_session_factory())


@router.post("", response_model=SubscriptionResponse, status_code=201)
async def create_clinic(
    request: ClinicCreate,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    summary = await service.create_clinic(request.name, tier=request.tier, timezone=request.timezone)
    return SubscriptionResponse(**summary)


@router.get("/{clinic_id}/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    clinic_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    return SubscriptionResponse(**await service.get_summary(clinic_id))


@router.put("/{clinic_id}/subscription/tier", response_model=SubscriptionResponse)
async def change_tier(
    clinic_id: str,
    request: TierChangeRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    """Move the clinic to another base tier. INTELLIGENCE is rejected (400)."""
    return SubscriptionResponse(**await service.change_tier(clinic_id, request.tier))


@router.put("/{clinic_id}/subscription/intelligence", response_model=SubscriptionResponse)
async def set_intelligence_addon(
    clinic_id: str,
    request: IntelligenceAddonRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    return SubscriptionResponse(**await service.set_intelligence_addon(clinic_id, request.enabled))


@router.get("/{clinic_id}/features", response_model=FeaturesResponse)
async def list_features(
    clinic_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> FeaturesResponse:
    """Enabled features for the clinic. The frontend uses this to render gated screens."""
    subscription = await service.get_subscription(clinic_id)
    return FeaturesResponse(
        clinic_id=clinic_id,
        tier=subscription.tier.name,
        has_intelligence_addon=subscription.has_intelligence_addon,
        features=[str(f) for f in enabled_features(subscription)],
    )


@router.get("/{clinic_id}/features/{feature}", response_model=FeatureAccessResponse)
async def check_feature(
    clinic_id: str,
    feature: str,
    service: SubscriptionService = Depends(get_subscription_service),
) -> FeatureAccessResponse:
    try:
        key = Feature(feature)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown feature '{feature}'")

    subscription = await service.get_subscription(clinic_id)
    return FeatureAccessResponse(
        feature=str(key),
        required_tier=required_tier(key).name,
        allowed=can_access(subscription, key),
    )
