"""URL-derived quality tiers for ad media.

Tiers are a ranking aid only. Images are ranked by the CDN resize token in the
URL (``s600x600``, ``p720x720`` ...); a URL without one is the CDN's original
rendition. Videos are ranked by resolution/encoding tokens in the path and in
the base64 ``efg`` parameter the video CDN attaches to every rendition.
"""

from __future__ import annotations

import base64
import binascii
import re
from urllib.parse import parse_qs, urlsplit

from ad_media_extractor.models import QualityTier

_SIZE_TOKEN_RE = re.compile(r"(?<![a-z0-9])[spc](\d{2,4})x(\d{2,4})(?![0-9])")

_VIDEO_HIGH_RE = re.compile(r"(?<![a-z0-9])(hd|fhd|uhd|1080p?|720p?|1440p?|2160p?)(?![a-z0-9])")
_VIDEO_MEDIUM_RE = re.compile(r"(?<![a-z0-9])(sd|360p?|480p?|540p?)(?![a-z0-9])")
_VIDEO_LOW_RE = re.compile(r"(?<![a-z0-9])(lq|ld|low|144p?|240p?|270p?)(?![a-z0-9])")

IMAGE_HIGH_MIN_PX = 600
IMAGE_MEDIUM_MIN_PX = 200


def image_quality_tier(url: str) -> QualityTier:
    """Rank an image URL by the largest CDN resize token it carries."""
    tokens = _SIZE_TOKEN_RE.findall(url.lower())
    if not tokens:
        return QualityTier.HIGH
    largest = max(max(int(w), int(h)) for w, h in tokens)
    if largest >= IMAGE_HIGH_MIN_PX:
        return QualityTier.HIGH
    if largest >= IMAGE_MEDIUM_MIN_PX:
        return QualityTier.MEDIUM
    return QualityTier.LOW


def video_quality_tier(url: str) -> QualityTier:
    """Rank a video URL by resolution tokens in its path and ``efg`` tag."""
    parts = urlsplit(url)
    haystack = parts.path.lower()
    efg = parse_qs(parts.query).get("efg")
    if efg:
        haystack += " " + _decode_efg(efg[0]).lower()

    if _VIDEO_HIGH_RE.search(haystack):
        return QualityTier.HIGH
    if _VIDEO_MEDIUM_RE.search(haystack):
        return QualityTier.MEDIUM
    if _VIDEO_LOW_RE.search(haystack):
        return QualityTier.LOW
    return QualityTier.MEDIUM


def _decode_efg(value: str) -> str:
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="ignore")
    except (binascii.Error, ValueError):
        return ""
