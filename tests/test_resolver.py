"""Tests for the resolution decision: network vs DOM, video vs image."""

import pytest

from ad_media_extractor.engine.resolver import ResolutionEngine, resolve_url, select_video_resource
from ad_media_extractor.errors import ErrorKind, ExtractionError
from ad_media_extractor.models import CandidateSource, MediaKind, MediaType, ObservedResource, QualityTier
from ad_media_extractor.network.observer import NetworkObserver
from ad_media_extractor.probe.dom import DomProbe
from ad_media_extractor.trail import ExtractionTrail
from conftest import FakeSession

VIDEO_LOW = "https://video.xx.fbcdn.net/v/t42.1790-2/ad_240p.mp4"
VIDEO_SD = "https://video.xx.fbcdn.net/v/t42.1790-2/ad_sd.mp4"
VIDEO_HD = "https://video.xx.fbcdn.net/v/t42.1790-2/ad_hd.mp4"
VIDEO_HD_2 = "https://video.xx.fbcdn.net/v/t42.1790-2/ad_1080p.mp4"
IMAGE = "https://scontent.xx.fbcdn.net/v/t45.1600-4/creative.jpg"

RESOLVER_CONFIG = {"resolver": {"settle_delay": 0}, "sequencer": {"step_delay": 0}}


def _res(url, tier, order):
    return ObservedResource(url=url, kind=MediaKind.VIDEO, quality_hint=tier, first_seen_order=order)


async def _resolve(session):
    trail = ExtractionTrail()
    observer = NetworkObserver(trail=trail)
    observer.attach(session)
    await session.navigate(session.url)
    engine = ResolutionEngine(RESOLVER_CONFIG)
    resolution = await engine.resolve(session, observer, DomProbe(session), trail)
    return resolution, trail


# ── Selection ──


def test_select_first_high_tier_in_arrival_order():
    resources = [
        _res(VIDEO_LOW, QualityTier.LOW, 0),
        _res(VIDEO_HD, QualityTier.HIGH, 1),
        _res(VIDEO_HD_2, QualityTier.HIGH, 2),
    ]
    assert select_video_resource(resources).url == VIDEO_HD


def test_select_falls_back_to_first_video():
    resources = [_res(VIDEO_SD, QualityTier.MEDIUM, 1), _res(VIDEO_LOW, QualityTier.LOW, 0)]
    assert select_video_resource(resources).url == VIDEO_LOW


def test_select_ignores_images_and_empty():
    image = ObservedResource(url=IMAGE, kind=MediaKind.IMAGE, quality_hint=QualityTier.HIGH, first_seen_order=0)
    assert select_video_resource([image]) is None
    assert select_video_resource([]) is None


def test_resolve_url_relative():
    assert resolve_url("/v/a.mp4", "https://www.facebook.com/ads/x") == "https://www.facebook.com/v/a.mp4"
    assert resolve_url(VIDEO_HD, "https://www.facebook.com/") == VIDEO_HD


# ── Engine ──


@pytest.mark.asyncio
async def test_hd_from_quality_switch_beats_initial_low():
    session = FakeSession(
        has_video=True,
        controls=("play", "settings", "quality", "hd"),
        network=(VIDEO_LOW,),
        on_click={"hd": (VIDEO_HD,)},
    )
    resolution, trail = await _resolve(session)

    assert resolution.result.type == MediaType.VIDEO
    assert resolution.result.url == VIDEO_HD
    assert [c.url for c in resolution.candidates] == [VIDEO_LOW, VIDEO_HD]
    assert trail.names()[-1] == "decision"
    snapshots = [e.detail for e in trail.events if e.event == "network.snapshot"]
    assert [(s["phase"], s["videos"], s["images"]) for s in snapshots] == [
        ("initial", 1, 0),
        ("final", 2, 0),
    ]


@pytest.mark.asyncio
async def test_network_video_without_sequencer_controls():
    session = FakeSession(has_video=True, network=(VIDEO_SD,))
    resolution, _ = await _resolve(session)
    assert resolution.result.url == VIDEO_SD
    assert resolution.candidates[0].source == CandidateSource.NETWORK


@pytest.mark.asyncio
async def test_dom_fallback_when_network_saw_no_video():
    session = FakeSession(
        has_video=True,
        video_fields={"src": "blob:https://www.facebook.com/abc", "data": {}, "sources": ["/v/fallback.mp4"]},
    )
    resolution, _ = await _resolve(session)

    assert resolution.result.type == MediaType.VIDEO
    assert resolution.result.url == "https://www.facebook.com/v/fallback.mp4"
    assert resolution.candidates[-1].source == CandidateSource.DOM


@pytest.mark.asyncio
async def test_video_element_without_any_source_is_no_media():
    session = FakeSession(has_video=True, video_fields={"src": "", "data": {}, "sources": []})
    with pytest.raises(ExtractionError) as exc_info:
        await _resolve(session)
    assert exc_info.value.kind == ErrorKind.NO_MEDIA_FOUND


@pytest.mark.asyncio
async def test_image_ad_uses_dom_even_when_network_saw_images():
    session = FakeSession(
        network=("https://scontent.xx.fbcdn.net/v/s60x60/avatar.jpg",),
        images=[{"index": 0, "src": IMAGE, "dataSrc": "", "width": 600, "height": 600}],
    )
    resolution, _ = await _resolve(session)

    assert resolution.result.type == MediaType.IMAGE
    assert resolution.result.url == IMAGE
    assert resolution.candidates[0].source == CandidateSource.DOM


@pytest.mark.asyncio
async def test_no_video_no_image_is_no_media():
    session = FakeSession(images=[{"index": 0, "src": IMAGE, "dataSrc": "", "width": 50, "height": 50}])
    with pytest.raises(ExtractionError) as exc_info:
        await _resolve(session)
    assert exc_info.value.kind == ErrorKind.NO_MEDIA_FOUND


@pytest.mark.asyncio
async def test_resolution_is_deterministic_for_same_page():
    def build():
        return FakeSession(
            has_video=True,
            controls=("settings", "quality", "hd"),
            network=(VIDEO_LOW, VIDEO_SD),
            on_click={"hd": (VIDEO_HD,)},
        )

    first, _ = await _resolve(build())
    second, _ = await _resolve(build())
    assert first.result == second.result
