"""Allowed output sizes per Runware model and aspect ratio."""

from __future__ import annotations

from typing import Optional

from studio.core.logging import get_logger

logger = get_logger("providers.sizes")

Size = tuple[int, int]

DEFAULT_SIZE: Size = (1024, 1024)
AUTO = "auto"

NANO_BANANA: dict[str, Size] = {
    "1:1": (1024, 1024),
    "4:3": (1184, 864),
    "3:4": (864, 1184),
    "9:16": (768, 1344),
    "16:9": (1344, 768),
}

NANO_BANANA_PRO: dict[str, Size] = {
    "1:1": (2048, 2048),
    "4:3": (2400, 1792),
    "3:4": (1792, 2400),
    "9:16": (1536, 2752),
    "16:9": (2752, 1536),
}

MIDJOURNEY: dict[str, Size] = {
    "1:1": (1024, 1024),
    "4:3": (1232, 928),
    "3:4": (928, 1232),
    "9:16": (816, 1456),
    "16:9": (1456, 816),
}

SEEDREAM_40: dict[str, Size] = {
    "1:1": (1024, 1024),
    "4:3": (1184, 880),
    "3:4": (880, 1184),
    "9:16": (752, 1392),
    "16:9": (1392, 752),
}

SEEDREAM_45: dict[str, Size] = {
    "1:1": (2048, 2048),
    "4:3": (2304, 1728),
    "3:4": (1728, 2304),
    "9:16": (2560, 1440),
    "16:9": (1440, 2560),
}

Z_IMAGE_TURBO: dict[str, Size] = {
    "1:1": (1024, 1024),
    "4:3": (1152, 896),
    "3:4": (896, 1152),
    "9:16": (768, 1344),
    "16:9": (1344, 768),
}

RIVERFLOW: dict[str, Size] = {
    "1:1": (1024, 1024),
    "4:3": (1152, 864),
    "3:4": (864, 1152),
    "9:16": (720, 1280),
    "16:9": (1280, 720),
}

GENERIC: dict[str, Size] = {
    "1:1": (1024, 1024),
    "3:2": (1248, 832),
    "2:3": (832, 1248),
    "4:3": (1184, 864),
    "3:4": (864, 1184),
    "4:5": (896, 1152),
    "5:4": (1152, 896),
    "9:16": (768, 1344),
    "16:9": (1344, 768),
    "21:9": (1536, 672),
}

# Matched by case-insensitive substring of the model id, first hit wins.
MODEL_TABLES: list[tuple[tuple[str, ...], dict[str, Size]]] = [
    (("google:4@2",), NANO_BANANA_PRO),
    (("google:4@1",), NANO_BANANA),
    (("midjourney:3@1",), MIDJOURNEY),
    (("bytedance:seedream@4.5",), SEEDREAM_45),
    (("bytedance:5@0", "runware:400@1", "runware:106@1", "bfl:3@1", "bfl:4@1"), SEEDREAM_40),
    (("runware:z-image@turbo",), Z_IMAGE_TURBO),
    (("sourceful:2@1", "sourceful:2@2", "sourceful:2@3"), RIVERFLOW),
]


def table_for_model(model: str) -> Optional[dict[str, Size]]:
    needle = (model or "").lower()
    for keys, table in MODEL_TABLES:
        if any(key in needle for key in keys):
            return table
    return None


def resolve_dimensions(model: str, aspect_ratio: Optional[str]) -> Optional[Size]:
    """Width/height for ``(model, aspect_ratio)``; ``None`` means let the provider choose.

    Unknown pairs never fail: unknown models use the generic table and
    unknown ratios fall back to a 1024 square.
    """
    ratio = (aspect_ratio or "1:1").strip()
    if ratio.lower() == AUTO:
        return None

    table = table_for_model(model)
    if table is None:
        logger.warning("unknown_model_size_table", model=model, aspect_ratio=ratio)
        table = GENERIC

    size = table.get(ratio)
    if size is None:
        logger.warning("unknown_aspect_ratio", model=model, aspect_ratio=ratio, fallback=DEFAULT_SIZE)
        return DEFAULT_SIZE
    return size


def fal_image_size(aspect_ratio: Optional[str], base: int = 1024) -> Size:
    """Fal.ai takes free-form sizes; the long edge is ``base``, the short edge follows the ratio."""
    ratio = (aspect_ratio or "1:1").strip()
    try:
        w_part, h_part = ratio.split(":", 1)
        w_ratio, h_ratio = float(w_part), float(h_part)
        if w_ratio <= 0 or h_ratio <= 0:
            raise ValueError(ratio)
    except ValueError:
        return (base, base)
    ratio_value = w_ratio / h_ratio
    if w_ratio > h_ratio:
        return (base, int(base / ratio_value))
    return (int(base * ratio_value), base)


VIDEO_LONG_EDGE = {"480p": 854, "720p": 1280, "1080p": 1920}
VIDEO_SHORT_EDGE = {"480p": 480, "720p": 720, "1080p": 1080}


def video_dimensions(resolution: Optional[str], aspect_ratio: Optional[str]) -> Size:
    res = (resolution or "720p").lower()
    if res not in VIDEO_LONG_EDGE:
        logger.warning("unknown_video_resolution", resolution=resolution, fallback="720p")
        res = "720p"
    long_edge, short_edge = VIDEO_LONG_EDGE[res], VIDEO_SHORT_EDGE[res]
    ratio = (aspect_ratio or "16:9").strip()
    if ratio == "9:16":
        return (short_edge, long_edge)
    if ratio == "1:1":
        return (short_edge, short_edge)
    return (long_edge, short_edge)
