# core/pricing.py
from enum import Enum
from typing import Dict, Iterable, List

from pydantic import BaseModel


class FeatureKey(str, Enum):
    WEBSITE = "website"
    WEBAPP = "webapp"
    AI = "ai"
    AUTOMATIONS = "automations"
    PAYMENTS = "payments"
    CMS = "cms"
    EMAIL = "email"


FEATURE_LABELS: Dict[FeatureKey, str] = {
    FeatureKey.WEBSITE: "Website",
    FeatureKey.WEBAPP: "Web App",
    FeatureKey.AI: "AI Assistant (OpenAI)",
    FeatureKey.AUTOMATIONS: "Automations (Zapier)",
    FeatureKey.PAYMENTS: "Payments (Stripe)",
    FeatureKey.CMS: "CMS (Sanity/Webflow CMS)",
    FeatureKey.EMAIL: "Email (custom domain)",
}

# (setup, monthly) in whole dollars
BASE_PRICES: Dict[FeatureKey, tuple] = {
    FeatureKey.WEBSITE: (6000, 150),
    FeatureKey.WEBAPP: (12000, 400),
    FeatureKey.AI: (3000, 150),
    FeatureKey.AUTOMATIONS: (2000, 100),
    FeatureKey.PAYMENTS: (2500, 120),
    FeatureKey.CMS: (1500, 80),
    FeatureKey.EMAIL: (300, 15),
}

# Bundle discounts on setup fees
DISCOUNT_WEBSITE_PLUS_CMS = 0.1
DISCOUNT_WEBSITE_PLUS_PAYMENTS = 0.1


class Line(BaseModel):
    setup: int = 0
    monthly: int = 0


class Quote(BaseModel):
    setup: int
    monthly: int
    breakdown: Dict[str, Line]


def price(features: Iterable[FeatureKey]) -> Quote:
    selected = set(FeatureKey(f) for f in features)
    breakdown = {key.value: Line() for key in FeatureKey}

    for key in selected:
        setup, monthly = BASE_PRICES[key]
        breakdown[key.value] = Line(setup=setup, monthly=monthly)

    if FeatureKey.WEBSITE in selected and FeatureKey.CMS in selected:
        line = breakdown[FeatureKey.WEBSITE.value]
        line.setup = round(line.setup * (1 - DISCOUNT_WEBSITE_PLUS_CMS))
    if FeatureKey.WEBSITE in selected and FeatureKey.PAYMENTS in selected:
        line = breakdown[FeatureKey.PAYMENTS.value]
        line.setup = round(line.setup * (1 - DISCOUNT_WEBSITE_PLUS_PAYMENTS))

    return Quote(
        setup=sum(line.setup for line in breakdown.values()),
        monthly=sum(line.monthly for line in breakdown.values()),
        breakdown=breakdown,
    )


def plan_from_features(features: Iterable[FeatureKey]) -> str:
    """Human plan name, e.g. ``Website + CMS (Sanity/Webflow CMS)``."""
    selected = set(FeatureKey(f) for f in features)
    ordered: List[FeatureKey] = [key for key in FeatureKey if key in selected]
    if not ordered:
        return "Empty"
    return " + ".join(FEATURE_LABELS[key] for key in ordered)
