"""Clinic and subscription API Pydantic schemas."""

from pydantic import BaseModel, Field

# ---------- Clinics ----------


class ClinicCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    tier: str = "CAPTURE"
    timezone: str | None = None


# ---------- Subscription ----------


class SubscriptionResponse(BaseModel):
    clinic_id: str
    clinic_name: str
    tier: str
    tier_name: str
    has_intelligence_addon: bool
    subscription_status: str
    features: list[str]


class TierChangeRequest(BaseModel):
    tier: str


class IntelligenceAddonRequest(BaseModel):
    enabled: bool


# ---------- Features ----------


class FeaturesResponse(BaseModel):
    clinic_id: str
    tier: str
    has_intelligence_addon: bool
    features: list[str]


class FeatureAccessResponse(BaseModel):
    feature: str
    required_tier: str
    allowed: bool
