"""Subscription tiers and the feature permission matrix.

Pure domain functions over static tables. No DB access, fully deterministic.
The same answers are served to the frontend for UI gating and re-checked on
every gated API request.
"""

from dataclasses import dataclass
from enum import IntEnum, StrEnum
from types import MappingProxyType


class Tier(IntEnum):
    """Subscription tiers. INTELLIGENCE is an add-on, not a rung on the ladder."""

    CAPTURE = 0
    CORE = 1
    PLUS = 2
    PRO = 3
    ENTERPRISE = 4
    INTELLIGENCE = 5


BASE_TIERS: tuple[Tier, ...] = (
    Tier.CAPTURE,
    Tier.CORE,
    Tier.PLUS,
    Tier.PRO,
    Tier.ENTERPRISE,
)


class Feature(StrEnum):
    """Gated product capabilities."""

    # Tier 0: CAPTURE
    PAPER_SCANNING = "PAPER_SCANNING"
    EXCEL_IMPORT = "EXCEL_IMPORT"
    PATIENT_DEDUPLICATION = "PATIENT_DEDUPLICATION"
    BASIC_PATIENT_MANAGEMENT = "BASIC_PATIENT_MANAGEMENT"
    DOCUMENT_ARCHIVAL = "DOCUMENT_ARCHIVAL"
    EXPORT_CSV = "EXPORT_CSV"
    OCR_BASIC = "OCR_BASIC"

    # Tier 1: CORE
    CALENDAR_SLOTS = "CALENDAR_SLOTS"
    VISIT_HISTORY = "VISIT_HISTORY"
    MEDICINES_LIST = "MEDICINES_LIST"
    INVOICING = "INVOICING"
    DIGITAL_PRESCRIPTIONS = "DIGITAL_PRESCRIPTIONS"
    ONE_WAY_WHATSAPP = "ONE_WAY_WHATSAPP"
    BASIC_ANALYTICS = "BASIC_ANALYTICS"
    MEDICAL_CODING = "MEDICAL_CODING"

    # Tier 2: PLUS
    WHATSAPP_API = "WHATSAPP_API"
    AUTO_REMINDERS = "AUTO_REMINDERS"
    PAYMENT_LINKS = "PAYMENT_LINKS"
    TWO_WAY_WHATSAPP = "TWO_WAY_WHATSAPP"
    PRESCRIPTION_TEMPLATES = "PRESCRIPTION_TEMPLATES"
    MULTI_DEVICE = "MULTI_DEVICE"
    ROLE_MANAGEMENT = "ROLE_MANAGEMENT"
    CONSENT_MANAGEMENT = "CONSENT_MANAGEMENT"
    DOCTOR_SIGNATURE = "DOCTOR_SIGNATURE"

    # Tier 3: PRO
    MULTI_DOCTOR = "MULTI_DOCTOR"
    MULTI_CLINIC = "MULTI_CLINIC"
    LAB_TESTS = "LAB_TESTS"
    INVENTORY = "INVENTORY"
    QUEUE_MANAGEMENT = "QUEUE_MANAGEMENT"
    AUDIT_LOGS = "AUDIT_LOGS"
    INSURANCE_BILLING = "INSURANCE_BILLING"
    DIGITAL_INTAKE_FORMS = "DIGITAL_INTAKE_FORMS"
    BROADCAST_CAMPAIGNS = "BROADCAST_CAMPAIGNS"
    OCR_ADVANCED = "OCR_ADVANCED"
    ADVANCED_ANALYTICS = "ADVANCED_ANALYTICS"

    # Tier 4: ENTERPRISE
    FULL_EHR = "FULL_EHR"
    API_ACCESS = "API_ACCESS"
    MULTI_LOCATION_ANALYTICS = "MULTI_LOCATION_ANALYTICS"
    CUSTOM_BRANDING = "CUSTOM_BRANDING"
    DATA_WAREHOUSE_EXPORT = "DATA_WAREHOUSE_EXPORT"
    SSO = "SSO"
    WHATSAPP_CHATBOTS = "WHATSAPP_CHATBOTS"
    BULK_IMPORT_SUITE = "BULK_IMPORT_SUITE"

    # Tier 5: INTELLIGENCE (add-on)
    AI_PRESCRIPTION_ASSISTANT = "AI_PRESCRIPTION_ASSISTANT"
    AI_DIAGNOSIS_HINTS = "AI_DIAGNOSIS_HINTS"
    SMART_TASK_ENGINE = "SMART_TASK_ENGINE"
    PREDICTIVE_NO_SHOW = "PREDICTIVE_NO_SHOW"
    PATIENT_SEGMENTATION = "PATIENT_SEGMENTATION"
    ANOMALY_DETECTION = "ANOMALY_DETECTION"


_FEATURES_BY_TIER: dict[Tier, tuple[Feature, ...]] = {
    Tier.CAPTURE: (
        Feature.PAPER_SCANNING,
        Feature.EXCEL_IMPORT,
        Feature.PATIENT_DEDUPLICATION,
        Feature.BASIC_PATIENT_MANAGEMENT,
        Feature.DOCUMENT_ARCHIVAL,
        Feature.EXPORT_CSV,
        Feature.OCR_BASIC,
    ),
    Tier.CORE: (
        Feature.CALENDAR_SLOTS,
        Feature.VISIT_HISTORY,
        Feature.MEDICINES_LIST,
        Feature.INVOICING,
        Feature.DIGITAL_PRESCRIPTIONS,
        Feature.ONE_WAY_WHATSAPP,
        Feature.BASIC_ANALYTICS,
        Feature.MEDICAL_CODING,
    ),
    Tier.PLUS: (
        Feature.WHATSAPP_API,
        Feature.AUTO_REMINDERS,
        Feature.PAYMENT_LINKS,
        Feature.TWO_WAY_WHATSAPP,
        Feature.PRESCRIPTION_TEMPLATES,
        Feature.MULTI_DEVICE,
        Feature.ROLE_MANAGEMENT,
        Feature.CONSENT_MANAGEMENT,
        Feature.DOCTOR_SIGNATURE,
    ),
    Tier.PRO: (
        Feature.MULTI_DOCTOR,
        Feature.MULTI_CLINIC,
        Feature.LAB_TESTS,
        Feature.INVENTORY,
        Feature.QUEUE_MANAGEMENT,
        Feature.AUDIT_LOGS,
        Feature.INSURANCE_BILLING,
        Feature.DIGITAL_INTAKE_FORMS,
        Feature.BROADCAST_CAMPAIGNS,
        Feature.OCR_ADVANCED,
        Feature.ADVANCED_ANALYTICS,
    ),
    Tier.ENTERPRISE: (
        Feature.FULL_EHR,
        Feature.API_ACCESS,
        Feature.MULTI_LOCATION_ANALYTICS,
        Feature.CUSTOM_BRANDING,
        Feature.DATA_WAREHOUSE_EXPORT,
        Feature.SSO,
        Feature.WHATSAPP_CHATBOTS,
        Feature.BULK_IMPORT_SUITE,
    ),
    Tier.INTELLIGENCE: (
        Feature.AI_PRESCRIPTION_ASSISTANT,
        Feature.AI_DIAGNOSIS_HINTS,
        Feature.SMART_TASK_ENGINE,
        Feature.PREDICTIVE_NO_SHOW,
        Feature.PATIENT_SEGMENTATION,
        Feature.ANOMALY_DETECTION,
    ),
}

# Minimum tier per feature. Read-only; changing it requires a deploy.
FEATURE_TIER_MAP: MappingProxyType[Feature, Tier] = MappingProxyType(
    {feature: tier for tier, features in _FEATURES_BY_TIER.items() for feature in features}
)


# ── Tier catalogue (pricing page / upgrade flow) ────────────────────

ANNUAL_DISCOUNT_PERCENT = 10
INTELLIGENCE_BUNDLE_DISCOUNT = 0.4
CURRENCY = "₹"

TIER_INFO: dict[Tier, dict[str, str]] = {
    Tier.CAPTURE: {
        "name": "Docita Capture",
        "description": "Perfect for getting started with digitization",
        "tagline": "Free forever",
    },
    Tier.CORE: {
        "name": "Docita Core",
        "description": "Essential features for small clinics",
        "tagline": "Solo Clinic Essentials",
    },
    Tier.PLUS: {
        "name": "Docita Plus",
        "description": "Advanced features for growing clinics",
        "tagline": "WhatsApp Automation",
    },
    Tier.PRO: {
        "name": "Docita Pro",
        "description": "Full-featured solution for professional clinics",
        "tagline": "Multi-Doctor Clinics",
    },
    Tier.ENTERPRISE: {
        "name": "Docita Enterprise",
        "description": "Hospital-grade solution with full customization",
        "tagline": "Hospital-Grade System",
    },
    Tier.INTELLIGENCE: {
        "name": "Docita Intelligence",
        "description": "AI-powered features to enhance your clinic",
        "tagline": "AI-Powered Add-on",
    },
}

# Prices in rupees; None = custom quote
TIER_PRICING: dict[Tier, dict[str, int | None]] = {
    Tier.CAPTURE: {"monthly": 0, "yearly": 0},
    Tier.CORE: {"monthly": 999, "yearly": 10790},
    Tier.PLUS: {"monthly": 2499, "yearly": 26990},
    Tier.PRO: {"monthly": 4999, "yearly": 53990},
    Tier.ENTERPRISE: {"monthly": None, "yearly": None},
    Tier.INTELLIGENCE: {"monthly": 2999, "yearly": 32390},
}

TIER_LIMITS: dict[Tier, dict[str, int]] = {
    Tier.CAPTURE: {"patients": 100, "doctors": 1, "storage_gb": 1, "branches": 1},
    Tier.CORE: {"patients": 500, "doctors": 1, "storage_gb": 2, "branches": 1},
    Tier.PLUS: {"patients": 2000, "doctors": 3, "storage_gb": 5, "branches": 1},
    Tier.PRO: {"patients": 10000, "doctors": 999, "storage_gb": 20, "branches": 3},
    Tier.ENTERPRISE: {"patients": 999999, "doctors": 999, "storage_gb": 100, "branches": 999},
    Tier.INTELLIGENCE: {"patients": 999999, "doctors": 999, "storage_gb": 100, "branches": 999},
}

INTELLIGENCE_ADDONS: list[dict] = [
    {
        "feature": Feature.AI_DIAGNOSIS_HINTS,
        "name": "AI Diagnosis Assist",
        "description": "Get AI-powered diagnosis suggestions based on symptoms",
        "monthly_price": 1999,
    },
    {
        "feature": Feature.AI_PRESCRIPTION_ASSISTANT,
        "name": "AI Prescription Assistant",
        "description": "Smart prescription suggestions and drug interactions",
        "monthly_price": 999,
    },
    {
        "feature": Feature.SMART_TASK_ENGINE,
        "name": "Smart Task Engine",
        "description": "AI-powered workflow automation and reminders",
        "monthly_price": 1499,
    },
]


@dataclass(frozen=True)
class ClinicSubscription:
    """The permission-relevant slice of a clinic's subscription."""

    tier: Tier = Tier.CAPTURE
    has_intelligence_addon: bool = False


def parse_tier(name: str) -> Tier:
    """Parse a tier name (case-insensitive). Raises ValueError when unknown."""
    try:
        return Tier[name.strip().upper()]
    except KeyError:
        raise ValueError(f"Invalid tier: {name}") from None


def required_tier(feature: Feature) -> Tier:
    """Return the minimum tier for a feature.

    An unknown key raises KeyError: it is a programming error, not a request error.
    """
    return FEATURE_TIER_MAP[feature]


def can_access(subscription: ClinicSubscription, feature: Feature) -> bool:
    """Check whether a subscription includes a feature.

    INTELLIGENCE features depend only on the add-on flag; every other feature
    is granted when the base tier is at or above the feature's tier.
    """
    tier = required_tier(feature)
    if tier == Tier.INTELLIGENCE:
        return subscription.has_intelligence_addon
    return subscription.tier >= tier


def can_access_tier(subscription: ClinicSubscription, tier: Tier) -> bool:
    """Check whether the base tier is at or above ``tier``.

    INTELLIGENCE is an add-on and is never reached through the base ladder.
    """
    if tier == Tier.INTELLIGENCE:
        return False
    return subscription.tier >= tier


def enabled_features(subscription: ClinicSubscription) -> list[Feature]:
    """All features the subscription can use, in catalogue order."""
    return [feature for feature in Feature if can_access(subscription, feature)]


def features_for_tier(tier: Tier) -> list[Feature]:
    """Features introduced at exactly ``tier``."""
    return [feature for feature, required in FEATURE_TIER_MAP.items() if required == tier]


def features_up_to_tier(tier: Tier) -> list[Feature]:
    """Features included at ``tier`` without the add-on."""
    if tier == Tier.INTELLIGENCE:
        return features_for_tier(Tier.INTELLIGENCE)
    return [
        feature
        for feature, required in FEATURE_TIER_MAP.items()
        if required != Tier.INTELLIGENCE and required <= tier
    ]


def intelligence_bundle_price() -> int:
    """Monthly price of all INTELLIGENCE add-ons bought together."""
    total = sum(addon["monthly_price"] for addon in INTELLIGENCE_ADDONS)
    return round(total * (1 - INTELLIGENCE_BUNDLE_DISCOUNT))


def tier_config() -> dict:
    """Full tier catalogue for pricing and upgrade pages."""

    def _entry(tier: Tier) -> dict:
        return {
            "id": tier.name,
            "level": int(tier),
            **TIER_INFO[tier],
            "pricing": {**TIER_PRICING[tier], "currency": CURRENCY},
            "limits": TIER_LIMITS[tier],
            "features": [str(f) for f in features_for_tier(tier)],
        }

    return {
        "tiers": [_entry(tier) for tier in BASE_TIERS],
        "feature_tier_map": {str(f): t.name for f, t in FEATURE_TIER_MAP.items()},
        "annual_discount_percent": ANNUAL_DISCOUNT_PERCENT,
        "intelligence": {
            **_entry(Tier.INTELLIGENCE),
            "addons": [{**addon, "feature": str(addon["feature"])} for addon in INTELLIGENCE_ADDONS],
            "bundle_discount": INTELLIGENCE_BUNDLE_DISCOUNT,
            "bundle_price": intelligence_bundle_price(),
        },
    }
