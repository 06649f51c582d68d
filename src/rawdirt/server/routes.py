from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from aiohttp import web

from rawdirt.errors import ValidationError
from rawdirt.index.models import encode_document
from rawdirt.scan.listing import ListRequest
from rawdirt.server.services import ServerServices

logger = logging.getLogger(__name__)

SERVICES_KEY = web.AppKey("rawdirt_services", ServerServices)

routes = web.RouteTableDef()


def _services(request: web.Request) -> ServerServices:
    return request.app[SERVICES_KEY]


def _int_param(query: Mapping[str, str], name: str) -> Optional[int]:
    raw = query.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc


async def _json_body(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc


@routes.get("/api/s3/list")
async def list_files(request: web.Request) -> web.Response:
    query = request.rel_url.query
    list_request = ListRequest(
        prefix=query.get("prefix", ""),
        continuation_token=query.get("continuationToken") or None,
        count_total=query.get("countTotal") == "true",
        page_number=_int_param(query, "pageNumber"),
        page_size=_int_param(query, "pageSize"),
    )
    logger.debug(
        "Listing request. prefix=%s page=%s size=%s token=%s count_total=%s",
        list_request.prefix,
        list_request.page_number,
        list_request.page_size,
        list_request.continuation_token is not None,
        list_request.count_total,
    )
    response = await _services(request).listing.list_page(list_request)
    return web.json_response(response.to_payload())


@routes.get("/api/s3/file")
async def file_url(request: web.Request) -> web.Response:
    key = request.rel_url.query.get("key", "")
    url = await _services(request).urls.get_url(key)
    return web.json_response({"url": url})


@routes.get("/api/metadata/index")
async def read_index(request: web.Request) -> web.Response:
    document = await _services(request).index.read()
    return web.json_response(encode_document(document))


@routes.post("/api/metadata/index")
async def update_index_entry(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Missing fileKey or metadata")
    file_key = body.get("fileKey")
    metadata = body.get("metadata")
    if not file_key or not isinstance(file_key, str) or not isinstance(metadata, dict) or not metadata:
        raise ValidationError("Missing fileKey or metadata")

    merged = await _services(request).index.update_file(file_key, metadata)
    return web.json_response({"message": "Metadata updated", "updatedKey": file_key, "metadata": merged})


@routes.post("/api/metadata/batch-update")
async def batch_update(request: web.Request) -> web.Response:
    body = await _json_body(request)
    files = body.get("files") if isinstance(body, dict) else None
    if not isinstance(files, dict):
        raise ValidationError("Missing or invalid files data in request")
    if not files:
        return web.json_response({"message": "No files to update", "updatedCount": 0})

    result = await _services(request).index.batch_update(files)
    return web.json_response(
        {"message": "Metadata updated", "updatedCount": result.updated_count, "timestamp": result.timestamp}
    )


@routes.post("/api/metadata/index/cleanup")
async def index_stats(request: web.Request) -> web.Response:
    stats = await _services(request).index.stats()
    if not stats.found:
        return web.json_response({"message": "Index file not found", "success": False})
    return web.json_response(
        {
            "message": "Index statistics computed",
            "indexSize": stats.index_size_mb,
            "fileCount": stats.file_count,
            "thumbnailCount": stats.thumbnail_count,
            "thumbnailsSize": stats.thumbnails_size_mb,
            "success": True,
        }
    )
