"""Tests for SubscriptionService: onboarding, tier changes and feature checks."""

import pytest

from clinic_core.core.exceptions import FeatureAccessDeniedError, InvalidTierError, NotFoundError
from clinic_core.db.models.clinic import Clinic
from clinic_core.domain.tiers import ClinicSubscription, Feature, Tier

pytestmark = pytest.mark.integration


async def test_new_clinic_starts_at_capture(subscription_service):
    summary = await subscription_service.create_clinic("New Clinic")

    assert summary["tier"] == "CAPTURE"
    assert summary["tier_name"] == "Docita Capture"
    assert summary["has_intelligence_addon"] is False
    assert summary["subscription_status"] == "active"
    assert "PAPER_SCANNING" in summary["features"]
    assert "CALENDAR_SLOTS" not in summary["features"]


async def test_create_clinic_rejects_intelligence_tier(subscription_service):
    with pytest.raises(InvalidTierError):
        await subscription_service.create_clinic("Clinic", tier="INTELLIGENCE")


async def test_upgrade_enables_features(subscription_service):
    clinic_id = (await subscription_service.create_clinic("Clinic", tier="CORE"))["clinic_id"]
    assert Feature.WHATSAPP_API not in await subscription_service.enabled_features(clinic_id)

    summary = await subscription_service.change_tier(clinic_id, "plus")

    assert summary["tier"] == "PLUS"
    assert Feature.WHATSAPP_API in await subscription_service.enabled_features(clinic_id)


async def test_downgrade_removes_features(subscription_service):
    clinic_id = (await subscription_service.create_clinic("Clinic", tier="PRO"))["clinic_id"]

    await subscription_service.change_tier(clinic_id, "CORE")

    assert Feature.QUEUE_MANAGEMENT not in await subscription_service.enabled_features(clinic_id)


@pytest.mark.parametrize("tier", ["INTELLIGENCE", "GOLD"])
async def test_change_tier_rejects_non_base_tiers(subscription_service, tier):
    clinic_id = (await subscription_service.create_clinic("Clinic"))["clinic_id"]

    with pytest.raises(InvalidTierError):
        await subscription_service.change_tier(clinic_id, tier)


async def test_intelligence_addon_toggle(subscription_service):
    clinic_id = (await subscription_service.create_clinic("Clinic", tier="CORE"))["clinic_id"]

    await subscription_service.set_intelligence_addon(clinic_id, True)
    assert await subscription_service.get_subscription(clinic_id) == ClinicSubscription(
        tier=Tier.CORE, has_intelligence_addon=True
    )
    assert Feature.AI_DIAGNOSIS_HINTS in await subscription_service.enabled_features(clinic_id)

    await subscription_service.set_intelligence_addon(clinic_id, False)
    assert Feature.AI_DIAGNOSIS_HINTS not in await subscription_service.enabled_features(clinic_id)


async def test_check_feature_denied_names_required_tier(subscription_service):
    clinic_id = (await subscription_service.create_clinic("Clinic", tier="CORE"))["clinic_id"]

    with pytest.raises(FeatureAccessDeniedError, match="PRO tier"):
        await subscription_service.check_feature(clinic_id, Feature.QUEUE_MANAGEMENT)


async def test_check_feature_denied_for_addon_feature(subscription_service):
    clinic_id = (await subscription_service.create_clinic("Clinic", tier="ENTERPRISE"))["clinic_id"]

    with pytest.raises(FeatureAccessDeniedError, match="INTELLIGENCE add-on"):
        await subscription_service.check_feature(clinic_id, Feature.SMART_TASK_ENGINE)


async def test_check_feature_allowed_returns_subscription(subscription_service):
    clinic_id = (await subscription_service.create_clinic("Clinic", tier="PRO"))["clinic_id"]

    subscription = await subscription_service.check_feature(clinic_id, Feature.QUEUE_MANAGEMENT)

    assert subscription.tier == Tier.PRO


async def test_unknown_clinic(subscription_service):
    with pytest.raises(NotFoundError):
        await subscription_service.get_subscription("missing")


async def test_unknown_stored_tier_falls_back_to_capture(subscription_service, session_factory):
    async with session_factory() as session:
        clinic = Clinic(name="Legacy", tier="GOLD")
        session.add(clinic)
        await session.commit()
        clinic_id = clinic.id

    assert (await subscription_service.get_subscription(clinic_id)).tier == Tier.CAPTURE
