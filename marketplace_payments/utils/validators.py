# marketplace_payments/utils/validators.py
"""
Input validation utilities for deliverable links and payout requests.
"""

import re
from typing import Any, Dict, List, Optional, Pattern
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from marketplace_payments.core.exceptions import ValidationError
from marketplace_payments.schemas.payment import PayoutRequest

# Accepted post URL shapes per platform, matched against host + path
_SUBDOMAIN = r"^(?:[a-z0-9-]+\.)*"

PLATFORM_PATTERNS: Dict[str, List[Pattern]] = {
    "instagram": [
        re.compile(_SUBDOMAIN + r"instagram\.com/(p|reel|reels|tv|stories|share)/", re.I),
        re.compile(_SUBDOMAIN + r"instagram\.com/[^/]+/(p|reel)/", re.I),
        re.compile(r"^instagr\.am/", re.I),
    ],
    "tiktok": [
        re.compile(_SUBDOMAIN + r"tiktok\.com/@[^/]+/video/", re.I),
        re.compile(_SUBDOMAIN + r"tiktok\.com/t/", re.I),
        re.compile(r"^vm\.tiktok\.com/", re.I),
    ],
    "youtube": [
        re.compile(_SUBDOMAIN + r"youtube\.com/watch", re.I),
        re.compile(_SUBDOMAIN + r"youtube\.com/shorts/", re.I),
        re.compile(_SUBDOMAIN + r"youtube\.com/live/", re.I),
        re.compile(r"^youtu\.be/", re.I),
        re.compile(_SUBDOMAIN + r"youtube\.com/embed/", re.I),
    ],
    "twitter": [
        re.compile(_SUBDOMAIN + r"twitter\.com/[^/]+/status/", re.I),
        re.compile(_SUBDOMAIN + r"x\.com/[^/]+/status/", re.I),
    ],
    "facebook": [
        re.compile(_SUBDOMAIN + r"facebook\.com/.+/posts/", re.I),
        re.compile(_SUBDOMAIN + r"facebook\.com/watch", re.I),
        re.compile(_SUBDOMAIN + r"facebook\.com/reel/", re.I),
        re.compile(r"^fb\.watch/", re.I),
    ],
}

SUPPORTED_PLATFORMS = tuple(PLATFORM_PATTERNS.keys())

PLATFORM_ALIASES = {"x": "twitter"}

PAYOUT_REQUIRED_FIELDS = (
    "deliverableId",
    "creatorId",
    "campaignId",
    "amountCents",
    "stripeAccountId",
)

INVALID_AMOUNT_MESSAGE = "Invalid amount. Must be a positive integer in cents"


def _post_location(url: str) -> str:
    """Host and path of a URL; query strings and fragments never identify a post."""
    try:
        parsed = urlparse(url)
        host = parsed.hostname or ""
    except ValueError:
        return ""
    return f"{host}{parsed.path}"


def _matches(patterns: List[Pattern], url: str) -> bool:
    location = _post_location(url)
    return any(pattern.match(location) for pattern in patterns)


def detect_platform(url: str) -> Optional[str]:
    """Return the platform whose post URL shape matches, if any."""
    for platform, patterns in PLATFORM_PATTERNS.items():
        if _matches(patterns, url):
            return platform
    return None


def validate_post_url(url: str, platform: Optional[str] = None) -> str:
    """
    Validate a deliverable post URL and return its platform.

    Args:
        url: Link to the published post
        platform: Declared platform; detected from the URL when omitted

    Returns:
        The normalized platform name

    Raises:
        ValidationError: If the URL is malformed, not HTTPS, on an
            unsupported platform, or not a post link for the platform
    """
    url = (url or "").strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        parsed = None
    if parsed is None or not parsed.scheme or not parsed.netloc:
        raise ValidationError(
            "INVALID_URL",
            "Invalid URL format. Please enter a valid URL starting with https://",
        )

    if parsed.scheme.lower() != "https":
        raise ValidationError("INVALID_URL", "URL must use HTTPS")

    if platform:
        platform = PLATFORM_ALIASES.get(platform.lower(), platform.lower())
        if platform not in PLATFORM_PATTERNS:
            raise ValidationError(
                "UNSUPPORTED_PLATFORM",
                f"Unsupported platform: {platform}. "
                f"Supported platforms: {', '.join(SUPPORTED_PLATFORMS)}",
            )
        if not _matches(PLATFORM_PATTERNS[platform], url):
            raise ValidationError(
                "INVALID_URL",
                f"URL is not a valid {platform} post link",
            )
        return platform

    detected = detect_platform(url)
    if detected is None:
        raise ValidationError(
            "UNSUPPORTED_PLATFORM",
            "Unsupported platform. Please link to a post on "
            f"{', '.join(SUPPORTED_PLATFORMS)}",
        )
    return detected


def validate_payout_request(payload: Dict[str, Any]) -> PayoutRequest:
    """
    Validate a raw payout request body.

    Raises:
        ValidationError: On missing fields or an invalid amount
    """
    if not isinstance(payload, dict):
        raise ValidationError("INVALID_REQUEST", "Request body must be a JSON object")

    missing = [
        name for name in PAYOUT_REQUIRED_FIELDS
        if payload.get(name) in (None, "")
    ]
    if missing:
        raise ValidationError(
            "MISSING_FIELDS",
            f"Missing required fields: {', '.join(missing)}",
        )

    amount = payload.get("amountCents")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("INVALID_AMOUNT", INVALID_AMOUNT_MESSAGE)

    try:
        return PayoutRequest(**payload)
    except PydanticValidationError as e:
        raise ValidationError("INVALID_REQUEST", str(e.errors()[0].get("msg")))
