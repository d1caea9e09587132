"""Tier-based feature gating.

Resolution logic:
1. Load the clinic's subscription (base tier + INTELLIGENCE add-on flag)
2. INTELLIGENCE features are enabled only by the add-on
3. Every other feature is enabled when the clinic's tier >= the feature's tier
"""

from fastapi import Path

from clinic_core.db.base import get_session_factory
from clinic_core.domain.tiers import ClinicSubscription, Feature
from clinic_core.services.subscription_service import SubscriptionService


def require_feature(feature: Feature):
    """Create a FastAPI dependency that requires a tier feature for the path's clinic.

    Returns a dependency function that can be used with Depends() to gate endpoints.
    If the clinic's subscription lacks the feature, FeatureAccessDeniedError (403)
    carries the upgrade message.

    Usage:
        @router.get("/{clinic_id}/queue", dependencies=[Depends(require_feature(Feature.QUEUE_MANAGEMENT))])
        async def list_queue(clinic_id: str):
            ...

    Args:
        feature: Feature the endpoint requires

    Returns:
        Async dependency function that validates feature access
    """

    async def dependency(clinic_id: str = Path(...)) -> ClinicSubscription:
        service = SubscriptionService(get_session_factory())
        return await service.check_feature(clinic_id, feature)

    return dependency
