"""HTTP client for the rawdirt server and the pagination navigator."""

from rawdirt.client.api import ListPageResult, RawdirtApiClient
from rawdirt.client.navigator import FileNavigator

__all__ = ["FileNavigator", "ListPageResult", "RawdirtApiClient"]
