"""RAW decode gateway."""

from rawdirt.decode.interfaces import DecodedImage, DecodeMetadata, RawDecoder

__all__ = ["DecodeMetadata", "DecodedImage", "RawDecoder", "build_decoder"]


def build_decoder(*, half_size: bool = False) -> RawDecoder:
    from rawdirt.decode.rawpy_decoder import RawpyDecoder

    return RawpyDecoder(half_size=half_size)
