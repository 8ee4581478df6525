from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

FONTS_DIR = Path(__file__).resolve().parent.parent / "assets" / "fonts"
DEFAULT_ANCHOR_Y_PERCENT = 86.0
SHADOW_DROP_PERCENT = 2.0
SHADOW_DY = 2
SHADOW_OPACITY = 0.6
MIN_FONT_SIZE = 28

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(text: str) -> str:
    # Ampersand goes first so the entities added below are not escaped again.
    escaped = text or ""
    for raw, entity in _XML_ESCAPES:
        escaped = escaped.replace(raw, entity)
    return escaped


def normalize_overlay_text(text: str | None) -> str:
    return " ".join((text or "").split()).strip()


def overlay_font_size(width: int, height: int) -> int:
    return max(MIN_FONT_SIZE, int(round(min(width, height) / 24)))


def overlay_markup(
    text: str,
    width: int,
    height: int,
    anchor_y_percent: float = DEFAULT_ANCHOR_Y_PERCENT,
) -> str:
    """SVG document with a drop shadow under a centred white title."""
    safe_text = escape_xml(normalize_overlay_text(text))
    font_size = overlay_font_size(width, height)
    title_y = f"{anchor_y_percent:g}%"
    shadow_y = f"{anchor_y_percent + SHADOW_DROP_PERCENT:g}%"
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<svg width="{int(width)}" height="{int(height)}" xmlns="http://www.w3.org/2000/svg">\n'
        "  <style>\n"
        f"    .title {{ fill: white; font-size: {font_size}px; font-weight: 700; "
        "font-family: Arial, Helvetica, sans-serif; text-anchor: middle; }\n"
        f"    .shadow {{ fill: black; opacity: {SHADOW_OPACITY}; font-size: {font_size}px; font-weight: 700; "
        "font-family: Arial, Helvetica, sans-serif; text-anchor: middle; }\n"
        "  </style>\n"
        "  <g>\n"
        f'    <text x="50%" y="{shadow_y}" class="shadow" dy="{SHADOW_DY}">{safe_text}</text>\n'
        f'    <text x="50%" y="{title_y}" class="title">{safe_text}</text>\n'
        "  </g>\n"
        "</svg>"
    )


def render_overlay(
    text: str,
    width: int,
    height: int,
    anchor_y_percent: float = DEFAULT_ANCHOR_Y_PERCENT,
) -> Image.Image | None:
    """Rasterise the overlay onto a transparent ``width x height`` layer.

    Returns ``None`` when there is no text to draw.
    """
    cleaned = normalize_overlay_text(text)
    if not cleaned:
        return None
    overlay = Image.new("RGBA", (int(width), int(height)), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = get_font(overlay_font_size(width, height))

    title_baseline = height * anchor_y_percent / 100
    shadow_baseline = height * (anchor_y_percent + SHADOW_DROP_PERCENT) / 100 + SHADOW_DY
    shadow_fill = (0, 0, 0, int(round(255 * SHADOW_OPACITY)))
    _draw_centered(draw, cleaned, font, width, shadow_baseline, shadow_fill)
    _draw_centered(draw, cleaned, font, width, title_baseline, (255, 255, 255, 255))
    return overlay


def _draw_centered(draw, text: str, font, width: int, baseline: float, fill) -> None:
    left, _top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (width - (right - left)) / 2 - left
    y = baseline - bottom
    draw.text((int(round(x)), int(round(y))), text, font=font, fill=fill)


@lru_cache(maxsize=16)
def get_font(size: int) -> ImageFont.FreeTypeFont:
    candidates = [
        FONTS_DIR / "Inter-Bold.ttf",
        Path("DejaVuSans-Bold.ttf"),
        Path("Arial Bold.ttf"),
        Path("Arial.ttf"),
    ]
    for candidate in candidates:
        try:
            return ImageFont.truetype(str(candidate), size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


__all__ = [
    "escape_xml",
    "normalize_overlay_text",
    "overlay_font_size",
    "overlay_markup",
    "render_overlay",
    "get_font",
]
