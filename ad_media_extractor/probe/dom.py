"""DOM Probe: read-only queries against the live ad snapshot page.

Each probe is a small script evaluated through the session. Scripts only
collect raw facts (attributes, rendered boxes); selection and ranking happen
in Python so the policy is the same one the network side uses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin, urlsplit

from ad_media_extractor.browser.session import BrowserSession
from ad_media_extractor.network.observer import DEFAULT_RULES, ClassificationRules
from ad_media_extractor.quality import image_quality_tier
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)

VIDEO_DATA_ATTRIBUTES = ("data-video-src", "data-hd-src", "data-sd-src", "data-src")

CONTROL_SELECTOR = (
    'button, [role="button"], [role="menuitem"], [role="menuitemradio"], '
    '[role="option"], [aria-label]'
)

HAS_VIDEO_JS = "() => document.querySelector('video') !== null"

VIDEO_FIELDS_JS = """
(attrs) => {
    const video = document.querySelector('video');
    if (!video) return null;
    const data = {};
    for (const attr of attrs) {
        const value = video.getAttribute(attr);
        if (value) data[attr] = value;
    }
    const sources = [];
    for (const source of video.querySelectorAll('source')) {
        const value = source.src || source.getAttribute('src');
        if (value) sources.push(value);
    }
    return {
        src: video.currentSrc || video.src || video.getAttribute('src') || '',
        data: data,
        sources: sources,
    };
}
"""

IMAGES_JS = """
() => Array.from(document.querySelectorAll('img')).map((img, index) => {
    const rect = img.getBoundingClientRect();
    return {
        index: index,
        src: img.currentSrc || img.src || '',
        dataSrc: img.getAttribute('data-src') || '',
        width: rect.width,
        height: rect.height,
    };
})
"""

# Shared matcher: aria-label, title, short visible text, or a class token
_MATCH_CONTROL_JS = """
const findControl = (selector, label) => {
    const needle = label.toLowerCase();
    const nodes = Array.from(document.querySelectorAll(selector));
    for (let i = 0; i < nodes.length; i++) {
        const el = nodes[i];
        const aria = (el.getAttribute('aria-label') || '').toLowerCase();
        const title = (el.getAttribute('title') || '').toLowerCase();
        const text = (el.innerText || '').trim().toLowerCase();
        const shortText = text.length <= 40 ? text : '';
        const cls = typeof el.className === 'string' ? el.className.toLowerCase() : '';
        const classTokens = cls.split(/[\\s_-]+/);
        if (aria.includes(needle) || title.includes(needle)
                || shortText.includes(needle) || classTokens.includes(needle)) {
            return {index: i, el: el, description: aria || title || shortText || cls};
        }
    }
    return null;
};
"""

FIND_CONTROL_JS = (
    "({selector, label}) => {"
    + _MATCH_CONTROL_JS
    + """
    const match = findControl(selector, label);
    return match ? {index: match.index, description: match.description} : null;
}"""
)

CLICK_CONTROL_JS = (
    "({selector, label}) => {"
    + _MATCH_CONTROL_JS
    + """
    const match = findControl(selector, label);
    if (!match) return false;
    match.el.scrollIntoView({block: 'center'});
    match.el.click();
    return true;
}"""
)


@dataclass(frozen=True)
class ControlHandle:
    """A located interactive control, identified by the label that matched it."""

    label: str
    index: int
    description: str = ""


@dataclass(frozen=True)
class ImageCandidate:
    index: int
    src: str
    data_src: str = ""
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def url(self) -> str:
        # Lazy loaders leave a low-res placeholder in src
        if self.data_src and len(self.data_src) > len(self.src):
            return self.data_src
        return self.src

    @classmethod
    def from_js(cls, raw: dict[str, Any]) -> "ImageCandidate":
        return cls(
            index=int(raw.get("index", 0)),
            src=raw.get("src") or "",
            data_src=raw.get("dataSrc") or "",
            width=float(raw.get("width") or 0),
            height=float(raw.get("height") or 0),
        )


def _usable(url: Optional[str]) -> bool:
    return bool(url) and not url.startswith(("blob:", "data:"))


def pick_video_source(fields: Optional[dict[str, Any]]) -> Optional[str]:
    """Choose a video source from collected attributes.

    Priority: current ``src``, then data attributes in
    ``VIDEO_DATA_ATTRIBUTES`` order, then nested ``<source>`` elements.
    ``blob:`` and ``data:`` URLs are not fetchable and are skipped.
    """
    if not fields:
        return None
    src = fields.get("src")
    if _usable(src):
        return src
    data = fields.get("data") or {}
    for attr in VIDEO_DATA_ATTRIBUTES:
        if _usable(data.get(attr)):
            return data[attr]
    for source in fields.get("sources") or []:
        if _usable(source):
            return source
    return None


def rank_ad_images(
    candidates: list[ImageCandidate],
    rules: ClassificationRules = DEFAULT_RULES,
    min_px: int = 100,
    base_url: str = "",
) -> list[tuple[str, ImageCandidate]]:
    """Filter on-host, large-enough images and rank them best first.

    Returns ``(resolved_url, candidate)`` pairs ordered by quality tier, then
    rendered area, then document order.
    """
    ranked = []
    for candidate in candidates:
        url = candidate.url
        if not _usable(url):
            continue
        resolved = urljoin(base_url, url) if base_url else url
        if not rules.is_media_host(urlsplit(resolved).hostname or ""):
            continue
        # Skip icons and avatars
        if candidate.width <= min_px or candidate.height <= min_px:
            continue
        tier = image_quality_tier(resolved)
        ranked.append(((-tier, -candidate.area, candidate.index), resolved, candidate))

    ranked.sort(key=lambda item: item[0])
    return [(url, candidate) for _, url, candidate in ranked]


class DomProbe:
    """Probes bound to one session. Absent elements yield None, never an error."""

    def __init__(
        self,
        session: BrowserSession,
        rules: ClassificationRules = DEFAULT_RULES,
        min_image_px: int = 100,
    ):
        self.session = session
        self.rules = rules
        self.min_image_px = min_image_px

    async def has_video_element(self) -> bool:
        return bool(await self.session.evaluate(HAS_VIDEO_JS))

    async def find_video_source(self) -> Optional[str]:
        fields = await self.session.evaluate(VIDEO_FIELDS_JS, list(VIDEO_DATA_ATTRIBUTES))
        return pick_video_source(fields)

    async def find_ad_image(self) -> Optional[str]:
        raw = await self.session.evaluate(IMAGES_JS) or []
        candidates = [ImageCandidate.from_js(item) for item in raw]
        ranked = rank_ad_images(candidates, self.rules, self.min_image_px, self.session.url)
        logger.debug(f"Ad image candidates: {len(ranked)} of {len(candidates)} <img> elements")
        if not ranked:
            return None
        return ranked[0][0]

    async def find_interactive_control(self, label: str) -> Optional[ControlHandle]:
        found = await self.session.evaluate(
            FIND_CONTROL_JS, {"selector": CONTROL_SELECTOR, "label": label}
        )
        if not found:
            return None
        return ControlHandle(
            label=label,
            index=int(found.get("index", 0)),
            description=found.get("description") or "",
        )

    async def click_control(self, handle: ControlHandle) -> bool:
        """Click the control matching ``handle``. Only the sequencer mutates the page."""
        clicked = await self.session.evaluate(
            CLICK_CONTROL_JS, {"selector": CONTROL_SELECTOR, "label": handle.label}
        )
        return bool(clicked)
