"""
Frame composition for exports.

Everything here is pure Pillow work: the layout math is separate from the
drawing so placement can be checked without rendering, and the overlay is
drawn once per story onto a transparent layer that every frame reuses.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .models import ReshareInfo


CANVAS_SIZE = (1080, 1920)

PROFILE_SIZE = 80
PROFILE_X = 40
PROFILE_Y = 60
RING_WIDTH = 4
TEXT_GAP = 20
RESHARE_LINE_OFFSET = 40
ICON_SIZE = 24

USERNAME_FONT_SIZE = 36
RESHARE_FONT_SIZE = 30
PLACEHOLDER_FILL = (0x33, 0x33, 0x33, 255)
SHADOW_COLOR = (0, 0, 0, 204)
SHADOW_OFFSET = (2, 2)
SHADOW_BLUR = 4

BOLD_FONTS = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf", "LiberationSans-Bold.ttf")
REGULAR_FONTS = ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf", "LiberationSans-Regular.ttf")


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def rounded(self) -> Tuple[int, int, int, int]:
        return round(self.x), round(self.y), round(self.width), round(self.height)


def fit_rect(src_width: int, src_height: int, canvas: Tuple[int, int] = CANVAS_SIZE) -> Rect:
    """Scale the source to fill one canvas axis and center it on the other."""
    canvas_w, canvas_h = canvas
    if src_width <= 0 or src_height <= 0:
        raise ValueError(f"invalid media size {src_width}x{src_height}")
    aspect = src_width / src_height
    if aspect > canvas_w / canvas_h:
        width = float(canvas_w)
        height = canvas_w / aspect
        return Rect(0.0, (canvas_h - height) / 2, width, height)
    width = canvas_h * aspect
    height = float(canvas_h)
    return Rect((canvas_w - width) / 2, 0.0, width, height)


@dataclass(frozen=True)
class OverlaySpec:
    username: str
    reshare: Optional[ReshareInfo] = None
    canvas: Tuple[int, int] = CANVAS_SIZE


@dataclass(frozen=True)
class OverlayLayout:
    circle_center: Tuple[float, float]
    circle_radius: float
    username_anchor: Tuple[float, float]
    icon_box: Optional[Rect] = None
    reshare_anchor: Optional[Tuple[float, float]] = None

    @property
    def circle_box(self) -> Tuple[float, float, float, float]:
        cx, cy = self.circle_center
        r = self.circle_radius
        return cx - r, cy - r, cx + r, cy + r


def layout_overlay(spec: OverlaySpec) -> OverlayLayout:
    radius = PROFILE_SIZE / 2
    center = (PROFILE_X + radius, PROFILE_Y + radius)
    text_x = PROFILE_X + PROFILE_SIZE + TEXT_GAP
    text_y = center[1]
    if spec.reshare is None:
        return OverlayLayout(center, radius, (text_x, text_y))
    icon = Rect(text_x, text_y + RESHARE_LINE_OFFSET, ICON_SIZE, ICON_SIZE)
    reshare_anchor = (icon.x + ICON_SIZE + 10, icon.y + ICON_SIZE / 2)
    return OverlayLayout(center, radius, (text_x, text_y), icon, reshare_anchor)


@lru_cache(maxsize=8)
def load_font(size: int, bold: bool = True) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for name in BOLD_FONTS if bold else REGULAR_FONTS:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def circular_avatar(avatar: Image.Image, size: int = PROFILE_SIZE) -> Image.Image:
    """Center-crop ``avatar`` to a square and mask it to a circle."""
    avatar = avatar.convert("RGBA")
    side = min(avatar.size)
    left = (avatar.width - side) // 2
    top = (avatar.height - side) // 2
    square = avatar.crop((left, top, left + side, top + side)).resize((size, size), Image.LANCZOS)
    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, size - 1, size - 1), fill=255)
    out = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    out.paste(square, (0, 0), mask)
    return out


def _draw_reshare_icon(draw: ImageDraw.ImageDraw, box: Rect) -> None:
    color = (255, 255, 255, 204)
    cx = box.x + box.width / 2
    cy = box.y + box.height / 2
    r = box.width / 3
    draw.arc((cx - r, cy - r, cx + r, cy + r), start=math.degrees(math.pi * 0.2),
             end=math.degrees(math.pi * 1.8), fill=color, width=3)
    quarter = box.width / 4
    draw.line(
        [(cx - quarter, box.y + quarter), (cx, box.y), (cx + quarter, box.y + quarter)],
        fill=color,
        width=3,
        joint="curve",
    )


def _text_with_shadow(layer: Image.Image, anchor: Tuple[float, float], text: str,
                      font, fill: Tuple[int, int, int, int]) -> None:
    shadow = Image.new("RGBA", layer.size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).text(
        (anchor[0] + SHADOW_OFFSET[0], anchor[1] + SHADOW_OFFSET[1]),
        text, font=font, fill=SHADOW_COLOR, anchor="lm",
    )
    layer.alpha_composite(shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR)))
    ImageDraw.Draw(layer).text(anchor, text, font=font, fill=fill, anchor="lm")


def render_overlay(spec: OverlaySpec, avatar: Optional[Image.Image] = None) -> Image.Image:
    """Transparent canvas-sized layer with avatar circle, username and reshare line."""
    layout = layout_overlay(spec)
    layer = Image.new("RGBA", spec.canvas, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    box = layout.circle_box
    if avatar is not None:
        layer.alpha_composite(circular_avatar(avatar), (PROFILE_X, PROFILE_Y))
    else:
        draw.ellipse(box, fill=PLACEHOLDER_FILL)
    draw.ellipse(box, outline=(255, 255, 255, 255), width=RING_WIDTH)

    _text_with_shadow(layer, layout.username_anchor, spec.username,
                      load_font(USERNAME_FONT_SIZE, bold=True), (255, 255, 255, 255))

    if spec.reshare is not None and layout.icon_box is not None and layout.reshare_anchor is not None:
        _draw_reshare_icon(ImageDraw.Draw(layer), layout.icon_box)
        _text_with_shadow(layer, layout.reshare_anchor, f"@{spec.reshare.original_user}",
                          load_font(RESHARE_FONT_SIZE, bold=False), (255, 255, 255, 230))
    return layer


def place_media(media: Image.Image, canvas: Tuple[int, int] = CANVAS_SIZE) -> Image.Image:
    """Black canvas with ``media`` letterboxed or pillarboxed into it."""
    x, y, w, h = fit_rect(media.width, media.height, canvas).rounded()
    frame = Image.new("RGB", canvas, (0, 0, 0))
    if (w, h) != media.size:
        media = media.resize((max(1, w), max(1, h)), Image.LANCZOS)
    if media.mode == "RGBA":
        frame.paste(media, (x, y), media)
    else:
        frame.paste(media.convert("RGB"), (x, y))
    return frame


def render_frame(media: Image.Image, overlay: Image.Image) -> Image.Image:
    """One finished RGB frame: placed media with the pre-drawn overlay on top."""
    frame = place_media(media, overlay.size).convert("RGBA")
    frame.alpha_composite(overlay)
    return frame.convert("RGB")
