"""Network Observer: classify and record media requests seen by a page session.

Classification runs inside Playwright's request/response callbacks, so it is
plain string inspection with no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ad_media_extractor.models import MediaKind, ObservedResource, QualityTier
from ad_media_extractor.quality import image_quality_tier, video_quality_tier
from ad_media_extractor.trail import ExtractionTrail

if TYPE_CHECKING:
    from ad_media_extractor.browser.session import BrowserSession

# DASH segment requests carry the byte range of the same logical asset
RANGE_PARAMS = frozenset({"bytestart", "byteend"})


@dataclass(frozen=True)
class ClassificationRules:
    """Host and path patterns that identify media resources."""

    media_hosts: tuple[str, ...] = ("fbcdn.net",)
    video_path_tokens: tuple[str, ...] = ("/t42.1790-", "/t39.25447-", "/o1/v/t2/", "/video-asset/")
    video_extensions: tuple[str, ...] = (".mp4", ".webm", ".mov", ".m4v", ".mkv")
    image_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp", ".gif")

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ClassificationRules":
        net_cfg = config.get("network", {})
        defaults = cls()
        return cls(
            media_hosts=tuple(h.lower() for h in net_cfg.get("media_hosts", defaults.media_hosts)),
            video_path_tokens=tuple(net_cfg.get("video_path_tokens", defaults.video_path_tokens)),
            video_extensions=tuple(e.lower() for e in net_cfg.get("video_extensions", defaults.video_extensions)),
            image_extensions=tuple(e.lower() for e in net_cfg.get("image_extensions", defaults.image_extensions)),
        )

    def is_media_host(self, host: str) -> bool:
        host = host.lower()
        return any(host == h or host.endswith("." + h) for h in self.media_hosts)


DEFAULT_RULES = ClassificationRules()


def classify(url: str, rules: ClassificationRules = DEFAULT_RULES) -> MediaKind:
    """Classify a resource URL as video, image or other."""
    if not url or not url.startswith(("http://", "https://")):
        return MediaKind.OTHER

    parts = urlsplit(url)
    path = parts.path.lower()

    if any(token in path for token in rules.video_path_tokens):
        return MediaKind.VIDEO
    if path.endswith(rules.video_extensions):
        return MediaKind.VIDEO
    if path.endswith(rules.image_extensions) and rules.is_media_host(parts.hostname or ""):
        return MediaKind.IMAGE
    return MediaKind.OTHER


def strip_range_params(url: str) -> str:
    """Drop byte-range query parameters so segment requests share one URL."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in query if k.lower() not in RANGE_PARAMS]
    if len(kept) == len(query):
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


def quality_of(url: str, kind: MediaKind) -> QualityTier:
    if kind == MediaKind.VIDEO:
        return video_quality_tier(url)
    if kind == MediaKind.IMAGE:
        return image_quality_tier(url)
    return QualityTier.LOW


class NetworkObserver:
    """Append-only, arrival-ordered record of classified media resources.

    One observer belongs to exactly one extraction attempt. ``freeze()`` is
    called when the attempt's session is discarded; later callbacks are ignored.
    """

    def __init__(
        self,
        rules: ClassificationRules = DEFAULT_RULES,
        trail: Optional[ExtractionTrail] = None,
    ):
        self.rules = rules
        self.trail = trail
        self._resources: list[ObservedResource] = []
        self._index: dict[str, int] = {}
        self._frozen = False

    def attach(self, session: "BrowserSession") -> None:
        session.on_request(self.observe)
        session.on_response(self.observe)

    def observe(self, url: str) -> Optional[ObservedResource]:
        """Classify ``url`` and record it when it is a media resource."""
        kind = classify(url, self.rules)
        if kind == MediaKind.OTHER:
            return None
        if kind == MediaKind.VIDEO:
            url = strip_range_params(url)
        return self.record(url, kind, quality_of(url, kind))

    def record(
        self, url: str, kind: MediaKind, quality_hint: QualityTier = QualityTier.MEDIUM
    ) -> Optional[ObservedResource]:
        if self._frozen:
            return None

        pos = self._index.get(url)
        if pos is not None:
            existing = self._resources[pos]
            if quality_hint > existing.quality_hint:
                upgraded = existing.model_copy(update={"quality_hint": quality_hint})
                self._resources[pos] = upgraded
                self._log("network.tier_raised", url=url, tier=quality_hint.name)
                return upgraded
            return existing

        resource = ObservedResource(
            url=url,
            kind=kind,
            quality_hint=quality_hint,
            first_seen_order=len(self._resources),
        )
        self._index[url] = len(self._resources)
        self._resources.append(resource)
        self._log("network.resource", url=url, kind=kind.value, tier=quality_hint.name)
        return resource

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def snapshot(self) -> tuple[ObservedResource, ...]:
        return tuple(self._resources)

    def videos(self) -> list[ObservedResource]:
        return [r for r in self._resources if r.kind == MediaKind.VIDEO]

    def images(self) -> list[ObservedResource]:
        return [r for r in self._resources if r.kind == MediaKind.IMAGE]

    def __len__(self) -> int:
        return len(self._resources)

    def _log(self, event: str, **detail: Any) -> None:
        if self.trail is not None:
            self.trail.add(event, **detail)
