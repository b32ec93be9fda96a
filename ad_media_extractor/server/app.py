"""HTTP surface: extraction endpoints plus the small CRUD/API glue around them.

Routes:
  POST   /extract                     full extraction result with trail
  POST   /api/fetch-video             {videoUrl} or {imageUrl}
  GET    /proxy-download              stream remote media as an attachment
  POST   /api/download-video          persist media through the Result Cache
  POST   /api/fetch-ads               ads_archive passthrough
  POST   /api/save-search             saved searches CRUD
  GET    /api/saved-searches
  GET    /api/saved-searches/{id}
  DELETE /api/saved-searches/{id}
  GET    /api/perma-filter            permanently filtered pages
  POST   /api/perma-filter
  POST   /api/perma-filter/remove
  GET    /health
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Optional

from aiohttp import web
from pydantic import ValidationError

from ad_media_extractor.cache.store import MediaCache
from ad_media_extractor.downloader.media import MediaDownloader, ext_to_mime, extension_for
from ad_media_extractor.engine.extractor import MediaExtractor
from ad_media_extractor.errors import AdLibraryError, DownloadError, ErrorKind, ExtractionError
from ad_media_extractor.models import AdSearchParams, ExtractionRequest, MediaKind, MediaType
from ad_media_extractor.network.observer import classify
from ad_media_extractor.search.ad_library import AdLibraryClient
from ad_media_extractor.storage.files import FilteredPagesStore, SavedSearchStore
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)

EXTRACTOR = web.AppKey("extractor", MediaExtractor)
CACHE = web.AppKey("cache", MediaCache)
DOWNLOADER = web.AppKey("downloader", MediaDownloader)
AD_LIBRARY = web.AppKey("ad_library", AdLibraryClient)
SAVED_SEARCHES = web.AppKey("saved_searches", SavedSearchStore)
FILTERED_PAGES = web.AppKey("filtered_pages", FilteredPagesStore)

_FILENAME_UNSAFE_RE = re.compile(r'[^A-Za-z0-9._-]')


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be JSON"}),
            content_type="application/json",
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be a JSON object"}),
            content_type="application/json",
        )
    return body


def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


def _media_key(media_type: MediaType) -> str:
    return "videoUrl" if media_type == MediaType.VIDEO else "imageUrl"


# ── Extraction ──


async def handle_extract(request: web.Request) -> web.Response:
    """Full extraction: result, every candidate URL and the attempt's trail."""
    body = await _json_body(request)
    url = body.get("url")
    if not url:
        return _error("No URL provided", 400)

    extractor = request.app[EXTRACTOR]
    try:
        report = await extractor.extract(ExtractionRequest(source_url=url))
    except ExtractionError as e:
        logger.error(f"Extraction failed for {url}: {e}")
        return _error(
            e.message,
            500,
            kind=e.kind.value,
            logs=[ev.model_dump(mode="json") for ev in e.events],
        )

    return web.json_response(
        {
            _media_key(report.result.type): report.result.url,
            "type": report.result.type.value,
            "allUrls": report.all_urls,
            "logs": [ev.model_dump(mode="json") for ev in report.events],
        }
    )


async def handle_fetch_video(request: web.Request) -> web.Response:
    """Same engine as /extract, answering with just the media URL."""
    body = await _json_body(request)
    url = body.get("url")
    if not url:
        return _error("No URL provided", 400)

    try:
        report = await request.app[EXTRACTOR].extract(ExtractionRequest(source_url=url))
    except ExtractionError as e:
        logger.error(f"Error fetching media for {url}: {e}")
        if e.kind == ErrorKind.NO_MEDIA_FOUND:
            return _error("No media URL found", 404)
        return _error("Failed to fetch media URL", 500, kind=e.kind.value)

    return web.json_response({_media_key(report.result.type): report.result.url})


# ── Download plumbing ──


def _safe_filename(name: Optional[str]) -> str:
    cleaned = _FILENAME_UNSAFE_RE.sub("_", name or "").strip("._")
    return cleaned or "download"


def _media_type_of(url: str) -> MediaType:
    return MediaType.IMAGE if classify(url) == MediaKind.IMAGE else MediaType.VIDEO


def _content_type(upstream_type: Optional[str], url: str, media_type: MediaType) -> str:
    # Generic or missing upstream types fall back on the URL extension
    if upstream_type and not upstream_type.startswith("application/octet-stream"):
        return upstream_type
    return ext_to_mime(extension_for(url, media_type))


async def handle_proxy_download(request: web.Request) -> web.StreamResponse:
    """Stream remote media back to the client as an attachment."""
    url = request.query.get("url", "")
    if not url.startswith(("http://", "https://")):
        return _error("A http(s) url parameter is required", 400)
    filename = _safe_filename(request.query.get("filename"))

    downloader = request.app[DOWNLOADER]
    response: Optional[web.StreamResponse] = None
    media_type = _media_type_of(url)
    try:
        async with downloader.open_stream(url) as upstream:
            response = web.StreamResponse(
                headers={
                    "Content-Type": _content_type(upstream.headers.get("Content-Type"), url, media_type),
                    "Content-Disposition": f'attachment; filename="{filename}"',
                }
            )
            if upstream.content_length:
                response.content_length = upstream.content_length
            await response.prepare(request)
            async for chunk in upstream.content.iter_chunked(64 * 1024):
                await response.write(chunk)
            await response.write_eof()
            return response
    except DownloadError as e:
        logger.warning(f"Proxy download failed for {url}: {e}")
        # Headers already sent; the client sees a truncated body
        if response is not None and response.prepared:
            return response
        return _error(str(e), 502)


async def handle_download_video(request: web.Request) -> web.Response:
    """Persist media by content hash and return its static URL."""
    body = await _json_body(request)
    media_url = body.get("video_url") or body.get("url")
    if not media_url:
        return _error("No video URL provided", 400)

    media_type = _media_type_of(media_url)
    try:
        cached = await request.app[CACHE].fetch(media_url, media_type)
    except DownloadError as e:
        logger.error(f"Error saving media {media_url}: {e}")
        return _error("Failed to save video", 500)

    return web.json_response(
        {"video_url": f"/static/videos/{cached.local_path.name}", "hash": cached.content_hash}
    )


# ── Ad search passthrough ──


async def handle_fetch_ads(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if not body.get("access_token"):
        return web.json_response({"error": {"message": "Access token is required"}}, status=400)
    try:
        params = AdSearchParams.model_validate(body)
    except ValidationError as e:
        return web.json_response({"error": {"message": str(e)}}, status=400)

    try:
        payload = await request.app[AD_LIBRARY].fetch_ads(params)
    except AdLibraryError as e:
        logger.error(f"Error fetching ads: {e}")
        return web.json_response(
            {"error": {"message": e.message, "details": e.details}}, status=e.status
        )
    return web.json_response(payload)


# ── Saved searches ──


async def handle_save_search(request: web.Request) -> web.Response:
    body = await _json_body(request)
    search_id = request.app[SAVED_SEARCHES].save(body)
    return web.json_response({"success": True, "id": search_id})


async def handle_list_searches(request: web.Request) -> web.Response:
    return web.json_response(request.app[SAVED_SEARCHES].list())


async def handle_get_search(request: web.Request) -> web.Response:
    search_id = request.match_info["search_id"]
    try:
        return web.json_response(request.app[SAVED_SEARCHES].get(search_id))
    except ValueError:
        return _error("Invalid search id", 400)
    except KeyError:
        return _error("Search not found", 404)


async def handle_delete_search(request: web.Request) -> web.Response:
    search_id = request.match_info["search_id"]
    try:
        request.app[SAVED_SEARCHES].delete(search_id)
    except ValueError:
        return _error("Invalid search id", 400)
    except KeyError:
        return _error("Search not found", 404)
    return web.json_response({"success": True})


# ── Permanently filtered pages ──


async def handle_list_filtered(request: web.Request) -> web.Response:
    return web.json_response({"pages": request.app[FILTERED_PAGES].list()})


async def handle_add_filtered(request: web.Request) -> web.Response:
    body = await _json_body(request)
    page_name = (body.get("pageName") or "").strip()
    if not page_name:
        return _error("pageName is required", 400)
    return web.json_response({"pages": request.app[FILTERED_PAGES].add(page_name)})


async def handle_remove_filtered(request: web.Request) -> web.Response:
    body = await _json_body(request)
    page_name = (body.get("pageName") or "").strip()
    if not page_name:
        return _error("pageName is required", 400)
    return web.json_response({"pages": request.app[FILTERED_PAGES].remove(page_name)})


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return _error("Internal server error", 500, details=str(e))


def create_app(
    config: dict[str, Any],
    extractor: Optional[MediaExtractor] = None,
    cache: Optional[MediaCache] = None,
    downloader: Optional[MediaDownloader] = None,
    ad_library: Optional[AdLibraryClient] = None,
) -> web.Application:
    """Create the aiohttp application with its collaborators wired in."""
    storage_cfg = config.get("storage", {})
    downloader = downloader or MediaDownloader(config)
    cache = cache or MediaCache(config, downloader=downloader)
    cache.cache_dir.mkdir(parents=True, exist_ok=True)

    app = web.Application(middlewares=[error_middleware])
    app[DOWNLOADER] = downloader
    app[CACHE] = cache
    app[EXTRACTOR] = extractor or MediaExtractor(config, cache=cache)
    app[AD_LIBRARY] = ad_library or AdLibraryClient(config)
    app[SAVED_SEARCHES] = SavedSearchStore(
        Path(storage_cfg.get("saved_searches_dir", "data/saved_searches"))
    )
    app[FILTERED_PAGES] = FilteredPagesStore(
        Path(storage_cfg.get("filtered_pages_path", "data/perma_filtered_pages.json"))
    )

    app.router.add_post("/extract", handle_extract)
    app.router.add_post("/api/fetch-video", handle_fetch_video)
    app.router.add_get("/proxy-download", handle_proxy_download)
    app.router.add_post("/api/download-video", handle_download_video)
    app.router.add_post("/api/fetch-ads", handle_fetch_ads)
    app.router.add_post("/api/save-search", handle_save_search)
    app.router.add_get("/api/saved-searches", handle_list_searches)
    app.router.add_get("/api/saved-searches/{search_id}", handle_get_search)
    app.router.add_delete("/api/saved-searches/{search_id}", handle_delete_search)
    app.router.add_get("/api/perma-filter", handle_list_filtered)
    app.router.add_post("/api/perma-filter", handle_add_filtered)
    app.router.add_post("/api/perma-filter/remove", handle_remove_filtered)
    app.router.add_get("/health", handle_health)
    app.router.add_static("/static/videos", cache.cache_dir)

    async def _close_cache(app: web.Application) -> None:
        await app[CACHE].close()

    app.on_cleanup.append(_close_cache)
    return app


def run_server(config: dict[str, Any], host: Optional[str] = None, port: Optional[int] = None) -> None:
    server_cfg = config.get("server", {})
    host = host or server_cfg.get("host", "127.0.0.1")
    port = port or server_cfg.get("port", 5004)
    logger.info(f"Server running on http://{host}:{port}")
    web.run_app(create_app(config), host=host, port=port, print=None)
