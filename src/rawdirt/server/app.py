from __future__ import annotations

import logging
from typing import Awaitable, Callable

from aiohttp import web

from rawdirt.errors import NotFoundError, RawdirtError, TransientStoreError, ValidationError
from rawdirt.server.routes import SERVICES_KEY, routes
from rawdirt.server.services import ServerServices

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except NotFoundError as exc:
        return web.json_response({"error": str(exc)}, status=404)
    except TransientStoreError as exc:
        logger.warning("Store error while handling request. path=%s error=%s", request.path, exc)
        return web.json_response({"error": str(exc)}, status=502)
    except RawdirtError as exc:
        logger.error("Request failed. path=%s error=%s", request.path, exc)
        return web.json_response({"error": str(exc)}, status=500)
    except Exception:
        logger.exception("Unexpected error while handling request. path=%s", request.path)
        return web.json_response({"error": "Internal server error"}, status=500)


def create_app(services: ServerServices) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services
    app.add_routes(routes)

    async def _close_services(_app: web.Application) -> None:
        await services.close()

    app.on_cleanup.append(_close_services)
    return app
