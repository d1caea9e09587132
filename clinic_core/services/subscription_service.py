"""SubscriptionService: clinic tier, INTELLIGENCE add-on and feature access."""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_core.core.exceptions import FeatureAccessDeniedError, InvalidTierError, NotFoundError
from clinic_core.db.models.clinic import Clinic
from clinic_core.domain.tiers import (
    BASE_TIERS,
    TIER_INFO,
    ClinicSubscription,
    Feature,
    Tier,
    can_access,
    enabled_features,
    parse_tier,
    required_tier,
)

logger = structlog.get_logger(__name__)


def subscription_from_clinic(clinic: Clinic) -> ClinicSubscription:
    """Build the permission view of a clinic row.

    Unknown stored tier names fall back to CAPTURE, the tier every clinic has.
    """
    try:
        tier = parse_tier(clinic.tier)
    except ValueError:
        logger.warning("unknown_stored_tier", clinic_id=clinic.id, tier=clinic.tier)
        tier = Tier.CAPTURE
    if tier == Tier.INTELLIGENCE:
        tier = Tier.CAPTURE
    return ClinicSubscription(tier=tier, has_intelligence_addon=bool(clinic.intelligence_addon))


def _summary(clinic: Clinic) -> dict:
    subscription = subscription_from_clinic(clinic)
    return {
        "clinic_id": clinic.id,
        "clinic_name": clinic.name,
        "tier": subscription.tier.name,
        "tier_name": TIER_INFO[subscription.tier]["name"],
        "has_intelligence_addon": subscription.has_intelligence_addon,
        "subscription_status": clinic.subscription_status,
        "features": [str(f) for f in enabled_features(subscription)],
    }


class SubscriptionService:
    """Service layer for clinic subscriptions and feature gating."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _load(self, session: AsyncSession, clinic_id: str) -> Clinic:
        result = await session.execute(select(Clinic).where(Clinic.id == clinic_id))
        clinic = result.scalar_one_or_none()
        if clinic is None:
            raise NotFoundError("Clinic not found")
        return clinic

    async def create_clinic(self, name: str, tier: str = "CAPTURE", timezone: str | None = None) -> dict:
        """Onboard a clinic. Every clinic starts with at least CAPTURE."""
        base_tier = self._validate_base_tier(tier)
        async with self.session_factory() as session:
            clinic = Clinic(name=name, tier=base_tier.name, intelligence_addon=False, timezone=timezone)
            session.add(clinic)
            await session.commit()
            await session.refresh(clinic)
            logger.info("clinic_created", clinic_id=clinic.id, tier=base_tier.name)
            return _summary(clinic)

    async def get_subscription(self, clinic_id: str) -> ClinicSubscription:
        async with self.session_factory() as session:
            clinic = await self._load(session, clinic_id)
            return subscription_from_clinic(clinic)

    async def get_summary(self, clinic_id: str) -> dict:
        async with self.session_factory() as session:
            clinic = await self._load(session, clinic_id)
            return _summary(clinic)

    @staticmethod
    def _validate_base_tier(name: str) -> Tier:
        try:
            tier = parse_tier(name)
        except ValueError as exc:
            raise InvalidTierError(str(exc)) from exc
        if tier not in BASE_TIERS:
            raise InvalidTierError("INTELLIGENCE is an add-on, not a base tier")
        return tier

    async def change_tier(self, clinic_id: str, tier: str) -> dict:
        """Upgrade or downgrade a clinic's base tier."""
        new_tier = self._validate_base_tier(tier)
        async with self.session_factory() as session:
            clinic = await self._load(session, clinic_id)
            previous = clinic.tier
            clinic.tier = new_tier.name
            clinic.subscription_status = "active"
            await session.commit()
            await session.refresh(clinic)
            logger.info("clinic_tier_changed", clinic_id=clinic_id, from_tier=previous, to_tier=new_tier.name)
            return _summary(clinic)

    async def set_intelligence_addon(self, clinic_id: str, enabled: bool) -> dict:
        async with self.session_factory() as session:
            clinic = await self._load(session, clinic_id)
            clinic.intelligence_addon = enabled
            await session.commit()
            await session.refresh(clinic)
            logger.info("intelligence_addon_changed", clinic_id=clinic_id, enabled=enabled)
            return _summary(clinic)

    async def enabled_features(self, clinic_id: str) -> list[Feature]:
        subscription = await self.get_subscription(clinic_id)
        return enabled_features(subscription)

    async def check_feature(self, clinic_id: str, feature: Feature) -> ClinicSubscription:
        """Raise FeatureAccessDeniedError unless the clinic can use ``feature``."""
        subscription = await self.get_subscription(clinic_id)
        if not can_access(subscription, feature):
            needed = required_tier(feature)
            logger.info(
                "feature_access_denied",
                clinic_id=clinic_id,
                feature=str(feature),
                tier=subscription.tier.name,
                required_tier=needed.name,
            )
            if needed == Tier.INTELLIGENCE:
                message = "This feature requires the INTELLIGENCE add-on."
            else:
                message = f"This feature requires the {needed.name} tier or higher. Upgrade to enable."
            raise FeatureAccessDeniedError(message)
        return subscription
