"""aiohttp application exposing listing, file URL and metadata index endpoints."""

from rawdirt.server.app import create_app
from rawdirt.server.services import ServerServices, build_services

__all__ = ["ServerServices", "build_services", "create_app"]
