"""
Static offer catalog: products, per-segment copy, caps and cooldowns.
"""

from datetime import timedelta

SAME_OFFER_COOLDOWN = timedelta(hours=24)
ANY_OFFER_COOLDOWN = timedelta(hours=4)
DAILY_WINDOW = timedelta(hours=24)
WEEKLY_WINDOW = timedelta(days=7)
MAX_DAILY_IMPRESSIONS = 2
MAX_WEEKLY_IMPRESSIONS = 5

OFFER_ENTRY = "entry"
OFFER_PACKS = "packs"
OFFER_CREATOR_MODE = "creator_mode"

# Offers that repeat the subscription pitch and are held back by the same-offer cooldown.
SAME_OFFER_COOLDOWN_KEYS = frozenset({OFFER_CREATOR_MODE})

SURFACE_SHEET = "sheet"
SURFACE_PILL = "pill"
SURFACE_FULLSCREEN = "fullscreen"

PRODUCTS = {
    "entry": {
        "id": "entry_access",
        "price": "$2.99",
        "looks_granted": 6,
    },
    "pack_10": {
        "id": "10looks",
        "price": "$9.99",
        "looks_granted": 10,
        "label": "10 Looks",
        "subtitle": "Quick decision",
    },
    "pack_30": {
        "id": "30looks",
        "price": "$22.99",
        "looks_granted": 30,
        "label": "30 Looks",
        "subtitle": "Enough to truly decide",
        "badge": "Most Popular",
    },
    "pack_100": {
        "id": "100looks",
        "price": "$44.99",
        "looks_granted": 100,
        "label": "100 Looks",
        "subtitle": "Explore freely",
    },
    "creator_mode": {
        "id": "creator_mode_weekly",
        "price": "$12.99/week",
        "label": "Creator Mode",
        "subtitle": "Unlimited looks • Studio quality • No watermark",
    },
}

PACK_PRODUCTS = ("pack_10", "pack_30", "pack_100")

HIGHLIGHT_ENTRY = PRODUCTS["entry"]["id"]
HIGHLIGHT_PACKS = PRODUCTS["pack_30"]["id"]
HIGHLIGHT_CREATOR_MODE = PRODUCTS["creator_mode"]["id"]

_CREATOR_BULLETS = ["Unlimited looks", "Studio-grade quality", "No watermark"]

COPY_VARIANTS = {
    "tourist": {
        "entry": {
            "title": "Unlock your first looks",
            "subtitle": "Preview your next hairstyle on you, instantly.",
            "bullets": ["Realistic results", "Made to look like you", "Save & share"],
            "cta": "Unlock for $2.99",
            "footnote": "One-time purchase. No subscription.",
        },
        "packs": {
            "title": "Get more looks",
            "subtitle": "Keep exploring. Your next look is one tap away.",
            "cta": "Get 30 Looks",
            "footnote": "Looks never expire.",
        },
    },
    "sampler": {
        "packs": {
            "title": "You're out of looks",
            "subtitle": "Keep exploring. Your next look is one tap away.",
            "cta": "Get 30 Looks",
        },
        "creator_mode": {
            "title": "Creator Mode",
            "subtitle": "Create freely, without interruptions.",
            "bullets": _CREATOR_BULLETS,
            "cta": "Enter Creator Mode: $12.99/week",
            "secondary": "Or get more looks",
            "footnote": "Renews weekly. Cancel anytime.",
        },
    },
    "explorer": {
        "creator_mode": {
            "title": "Creator Mode",
            "subtitle": "You're exploring deeply. Don't count looks.",
            "bullets": _CREATOR_BULLETS,
            "cta": "Enter Creator Mode: $12.99/week",
            "secondary": "Buy looks instead",
            "footnote": "Most users choose Creator Mode once they start comparing.",
        },
    },
    "buyer": {
        "creator_mode": {
            "title": "Make it effortless",
            "subtitle": "You're buying looks often. Creator Mode is simpler.",
            "bullets": _CREATOR_BULLETS,
            "cta": "Enter Creator Mode: $12.99/week",
            "secondary": "Continue with packs",
        },
    },
    "power": {
        "creator_mode": {
            "title": "Stay in flow",
            "subtitle": "Unlimited creation, no interruptions.",
            "cta": "Enter Creator Mode",
            "secondary": "Not now",
        },
    },
}

DELIGHT_PILL_COPY = {
    "title": "Create freely this week",
    "cta": "Try Creator Mode",
}


def products(*keys: str) -> list:
    return [dict(PRODUCTS[key]) for key in keys]


def copy_variant(segment: str, offer_key: str) -> dict:
    """Copy for a segment/offer pair, falling back to the explorer and tourist copy."""
    variants = COPY_VARIANTS.get(segment, {})
    if offer_key in variants:
        return dict(variants[offer_key])
    if offer_key == OFFER_CREATOR_MODE:
        return dict(COPY_VARIANTS["explorer"]["creator_mode"])
    return dict(COPY_VARIANTS["tourist"].get(offer_key, COPY_VARIANTS["tourist"]["packs"]))
