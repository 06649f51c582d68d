from __future__ import annotations

from rawdirt.config.loader import YamlConfigLoader
from rawdirt.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
