"""Tests for the serialized, cancellable batch loader."""

import asyncio
import random

import pytest

from ad_media_extractor.batch import BatchLoader
from ad_media_extractor.cache.store import MediaCache
from ad_media_extractor.engine.extractor import MediaExtractor
from ad_media_extractor.errors import ErrorKind, ExtractionError
from ad_media_extractor.models import BatchState, ExtractionReport, ExtractionResult, MediaType
from conftest import FakeDriver, FakeSession


VIDEO_URL = "https://video.xx.fbcdn.net/v/t42.1790-2/ad_hd.mp4"


class ScriptedExtractor:
    """Answers per URL: a media URL string, an exception, or ``"hang"``."""

    def __init__(self, answers):
        self.answers = answers
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.started = asyncio.Event()

    async def extract(self, request):
        url = request.source_url
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            await asyncio.sleep(0)
            answer = self.answers[url]
            if answer == "hang":
                await asyncio.sleep(3600)
            if isinstance(answer, Exception):
                raise answer
            return ExtractionReport(
                request=request, result=ExtractionResult(type=MediaType.VIDEO, url=answer)
            )
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_batch_runs_serially_and_collects_results(config):
    extractor = ScriptedExtractor(
        {
            "u1": "https://video.xx.fbcdn.net/v/1.mp4",
            "u2": ExtractionError(ErrorKind.NO_MEDIA_FOUND, "nothing"),
            "u3": "https://video.xx.fbcdn.net/v/3.mp4",
        }
    )
    loader = BatchLoader(config, extractor)
    progress = []

    results = await loader.run(["u1", "u2", "u3"], on_progress=lambda d, t, item: progress.append((d, t)))

    assert [r.ok for r in results] == [True, False, True]
    assert results[1].error_kind == "NO_MEDIA_FOUND"
    assert extractor.max_active == 1
    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert loader.state == BatchState.IDLE


@pytest.mark.asyncio
async def test_unexpected_exception_is_recorded_not_raised(config):
    extractor = ScriptedExtractor({"u1": RuntimeError("boom"), "u2": "https://video.xx.fbcdn.net/v/2.mp4"})
    results = await BatchLoader(config, extractor).run(["u1", "u2"])
    assert results[0].error == "boom"
    assert results[0].error_kind is None
    assert results[1].ok


@pytest.mark.asyncio
async def test_async_progress_callback_is_awaited(config):
    extractor = ScriptedExtractor({"u1": "https://video.xx.fbcdn.net/v/1.mp4"})
    seen = []

    async def on_progress(done, total, item):
        await asyncio.sleep(0)
        seen.append(item.source_url)

    await BatchLoader(config, extractor).run(["u1"], on_progress=on_progress)
    assert seen == ["u1"]


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_and_skips_rest(config):
    extractor = ScriptedExtractor(
        {"u1": "https://video.xx.fbcdn.net/v/1.mp4", "u2": "hang", "u3": "https://video.xx.fbcdn.net/v/3.mp4"}
    )
    loader = BatchLoader(config, extractor)

    run = asyncio.ensure_future(loader.run(["u1", "u2", "u3"]))
    while extractor.calls[-1:] != ["u2"]:
        await asyncio.sleep(0)
    assert loader.state == BatchState.RUNNING

    loader.cancel()
    results = await run

    assert [r.source_url for r in results] == ["u1"]
    assert "u3" not in extractor.calls
    assert extractor.active == 0
    assert loader.state == BatchState.IDLE


class StallingDownloader:
    """Blocks until cancelled; records how the transfer ended."""

    def __init__(self):
        self.started = asyncio.Event()
        self.stopped = asyncio.Event()
        self.cancelled = False

    async def download(self, url, dest):
        self.started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.stopped.set()


@pytest.mark.asyncio
async def test_cancel_with_download_aborts_the_transfer(config):
    downloader = StallingDownloader()
    cache = MediaCache(config, downloader=downloader)
    driver = FakeDriver(lambda url: FakeSession(has_video=True, network=(VIDEO_URL,)))
    extractor = MediaExtractor(config, driver=driver, cache=cache)
    loader = BatchLoader(config, extractor, download=True)

    async with cache:
        run = asyncio.ensure_future(loader.run(["u1", "u2"]))
        await asyncio.wait_for(downloader.started.wait(), timeout=1)

        loader.cancel()
        results = await asyncio.wait_for(run, timeout=1)
        await asyncio.wait_for(downloader.stopped.wait(), timeout=1)

        assert results == []
        assert downloader.cancelled
        assert not list(cache.cache_dir.glob("*"))


@pytest.mark.asyncio
async def test_cancel_during_pause(config):
    config["batch"]["min_delay"] = 10
    config["batch"]["max_delay"] = 10
    extractor = ScriptedExtractor({"u1": "https://video.xx.fbcdn.net/v/1.mp4", "u2": "https://video.xx.fbcdn.net/v/2.mp4"})
    loader = BatchLoader(config, extractor)
    progress = asyncio.Event()

    run = asyncio.ensure_future(loader.run(["u1", "u2"], on_progress=lambda *a: progress.set()))
    await progress.wait()
    loader.cancel()
    results = await asyncio.wait_for(run, timeout=1)

    assert len(results) == 1
    assert extractor.calls == ["u1"]


@pytest.mark.asyncio
async def test_run_rejects_reentry(config):
    extractor = ScriptedExtractor({"u1": "hang"})
    loader = BatchLoader(config, extractor)
    run = asyncio.ensure_future(loader.run(["u1"]))
    await extractor.started.wait()

    with pytest.raises(RuntimeError):
        await loader.run(["u1"])

    loader.cancel()
    await run


def test_next_delay_backs_off_after_failures():
    config = {"batch": {"min_delay": 1.0, "max_delay": 1.0, "backoff_factor": 2.0, "max_backoff": 5.0}}
    loader = BatchLoader(config, extractor=None, rng=random.Random(0))
    assert loader.next_delay() == 1.0
    loader._consecutive_failures = 2
    assert loader.next_delay() == 4.0
    loader._consecutive_failures = 5
    assert loader.next_delay() == 5.0
