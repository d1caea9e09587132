"""Tests for the tier permission matrix and tier catalogue."""

import pytest

from clinic_core.domain.tiers import (
    BASE_TIERS,
    FEATURE_TIER_MAP,
    INTELLIGENCE_ADDONS,
    ClinicSubscription,
    Feature,
    Tier,
    can_access,
    can_access_tier,
    enabled_features,
    features_for_tier,
    features_up_to_tier,
    intelligence_bundle_price,
    parse_tier,
    required_tier,
    tier_config,
)

pytestmark = pytest.mark.unit


# ---------- Feature map ----------


def test_every_feature_has_exactly_one_tier():
    assert set(FEATURE_TIER_MAP) == set(Feature)
    assert len(FEATURE_TIER_MAP) == len(Feature)


def test_feature_map_is_read_only():
    with pytest.raises(TypeError):
        FEATURE_TIER_MAP[Feature.SSO] = Tier.CAPTURE  # type: ignore[index]


def test_required_tier_examples():
    assert required_tier(Feature.PAPER_SCANNING) == Tier.CAPTURE
    assert required_tier(Feature.CALENDAR_SLOTS) == Tier.CORE
    assert required_tier(Feature.WHATSAPP_API) == Tier.PLUS
    assert required_tier(Feature.QUEUE_MANAGEMENT) == Tier.PRO
    assert required_tier(Feature.SSO) == Tier.ENTERPRISE
    assert required_tier(Feature.AI_DIAGNOSIS_HINTS) == Tier.INTELLIGENCE


def test_required_tier_unknown_key_raises():
    with pytest.raises(KeyError):
        required_tier("NOT_A_FEATURE")  # type: ignore[arg-type]


# ---------- can_access ----------


def test_core_clinic_cannot_use_whatsapp_api_until_plus():
    core = ClinicSubscription(tier=Tier.CORE)
    assert can_access(core, Feature.WHATSAPP_API) is False

    plus = ClinicSubscription(tier=Tier.PLUS)
    assert can_access(plus, Feature.WHATSAPP_API) is True


@pytest.mark.parametrize("addon", [False, True])
def test_access_is_monotonic_in_tier(addon):
    for feature in Feature:
        granted = False
        for tier in BASE_TIERS:
            allowed = can_access(ClinicSubscription(tier=tier, has_intelligence_addon=addon), feature)
            if granted:
                assert allowed, f"{feature} lost at {tier.name}"
            granted = granted or allowed


def test_enterprise_without_addon_has_no_intelligence_features():
    enterprise = ClinicSubscription(tier=Tier.ENTERPRISE)
    for feature in features_for_tier(Tier.INTELLIGENCE):
        assert can_access(enterprise, feature) is False


def test_addon_grants_intelligence_features_at_any_tier():
    capture = ClinicSubscription(tier=Tier.CAPTURE, has_intelligence_addon=True)
    assert can_access(capture, Feature.AI_PRESCRIPTION_ASSISTANT) is True
    assert can_access(capture, Feature.CALENDAR_SLOTS) is False


def test_can_access_tier_never_reaches_intelligence():
    enterprise = ClinicSubscription(tier=Tier.ENTERPRISE, has_intelligence_addon=True)
    assert can_access_tier(enterprise, Tier.PRO) is True
    assert can_access_tier(enterprise, Tier.INTELLIGENCE) is False
    assert can_access_tier(ClinicSubscription(tier=Tier.CORE), Tier.PLUS) is False


def test_enabled_features_for_capture():
    features = enabled_features(ClinicSubscription())
    assert set(features) == set(features_for_tier(Tier.CAPTURE))


def test_features_up_to_tier_is_cumulative():
    core = set(features_up_to_tier(Tier.CORE))
    assert set(features_for_tier(Tier.CAPTURE)) <= core
    assert Feature.WHATSAPP_API not in core
    assert not core & set(features_for_tier(Tier.INTELLIGENCE))


# ---------- parse_tier ----------


def test_parse_tier_is_case_insensitive():
    assert parse_tier("pro") == Tier.PRO
    assert parse_tier(" Plus ") == Tier.PLUS


def test_parse_tier_unknown_raises():
    with pytest.raises(ValueError, match="Invalid tier"):
        parse_tier("PLATINUM")


# ---------- Catalogue ----------


def test_bundle_price_applies_discount():
    total = sum(addon["monthly_price"] for addon in INTELLIGENCE_ADDONS)
    assert total == 4497
    assert intelligence_bundle_price() == 2698


def test_tier_config_shape():
    config = tier_config()

    assert [t["id"] for t in config["tiers"]] == ["CAPTURE", "CORE", "PLUS", "PRO", "ENTERPRISE"]
    assert config["annual_discount_percent"] == 10
    assert config["feature_tier_map"]["QUEUE_MANAGEMENT"] == "PRO"
    assert config["intelligence"]["bundle_price"] == 2698

    enterprise = config["tiers"][-1]
    assert enterprise["pricing"]["monthly"] is None
    assert "SSO" in enterprise["features"]
