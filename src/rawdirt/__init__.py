"""rawdirt: browse, decode and catalogue camera RAW files kept in an object store."""

__version__ = "0.1.0"
