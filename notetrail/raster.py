"""Pillow drawing surface for the visual loop (live previews and export frames)."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

from PIL import Image, ImageDraw, ImageFont

from .pitches import DEGREE_ORDER, DIAL_SIZE, node_position

RGB = tuple[int, int, int]

BACKGROUND: RGB = (11, 15, 20)
RING: RGB = (30, 41, 53)
TEXT: RGB = (230, 235, 242)
MUTED: RGB = (139, 148, 167)

CHANNEL_COLORS: Mapping[str, RGB] = MappingProxyType(
    {
        "text": (235, 207, 122),
        "major": (235, 207, 122),
        "minor": (105, 213, 140),
    }
)


def _font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


class RasterRenderer:
    """Draws the dial, trails and caption into an RGB frame.

    The ring, spokes and degree labels never change, so they are drawn once
    into a background image that every frame starts from.
    """

    def __init__(self, width: int = 540, height: int = 960) -> None:
        self.width = width
        self.height = height
        self._dial_size = int(width * 0.86)
        self._dial_left = (width - self._dial_size) // 2
        self._dial_top = int(height * 0.12)
        self._font = _font(max(12, width // 22))
        self._label_font = _font(max(10, width // 36))
        self._background = self._draw_background()
        self._image = self._background.copy()
        self._draw = ImageDraw.Draw(self._image)
        self.frames_drawn = 0

    def _to_px(self, x: float, y: float) -> tuple[float, float]:
        scale = self._dial_size / 100.0
        return (self._dial_left + x * scale, self._dial_top + y * scale)

    def node_xy(self, node: int) -> tuple[float, float]:
        return self._to_px(*node_position(node))

    def _draw_background(self) -> Image.Image:
        img = Image.new("RGB", (self.width, self.height), BACKGROUND)
        draw = ImageDraw.Draw(img)
        left, top = self._to_px(14, 14)
        right, bottom = self._to_px(86, 86)
        draw.ellipse([left, top, right, bottom], outline=RING, width=max(1, self.width // 270))
        dot = max(2, self.width // 120)
        for index in range(DIAL_SIZE):
            x, y = self.node_xy(index)
            draw.ellipse([x - dot, y - dot, x + dot, y + dot], fill=RING)
            lx, ly = self._to_px(*node_position(index, radius=43))
            draw.text((lx, ly), DEGREE_ORDER[index], fill=MUTED, font=self._label_font, anchor="mm")
        return img

    # -- renderer capability --------------------------------------------------

    def begin_frame(self, elapsed: float) -> None:
        _ = elapsed
        self._image = self._background.copy()
        self._draw = ImageDraw.Draw(self._image)

    def draw_segment(self, channel: str, start: int, end: int) -> None:
        color = CHANNEL_COLORS.get(channel, TEXT)
        self._draw.line(
            [self.node_xy(start), self.node_xy(end)],
            fill=color,
            width=max(2, self.width // 135),
        )

    def draw_node(self, channel: str, node: int, *, active: bool) -> None:
        color = CHANNEL_COLORS.get(channel, TEXT)
        radius = max(4, self.width // (40 if active else 70))
        x, y = self.node_xy(node)
        self._draw.ellipse([x - radius, y - radius, x + radius, y + radius], fill=color)

    def draw_caption(self, text: str, highlight: tuple[int, int] | None) -> None:
        if not text:
            return
        char_width = max(1.0, self._font.getlength("M"))
        per_line = max(1, int((self.width * 0.9) // char_width))
        line_height = int(char_width * 1.6)
        top = self._dial_top + self._dial_size + line_height
        start, end = highlight if highlight is not None else (-1, -1)
        for line_start in range(0, len(text), per_line):
            line = text[line_start : line_start + per_line]
            x = (self.width - self._font.getlength(line)) / 2
            y = top + (line_start // per_line) * line_height
            for offset, ch in enumerate(line):
                index = line_start + offset
                color = CHANNEL_COLORS["text"] if start <= index < end else MUTED
                self._draw.text((x, y), ch, fill=color, font=self._font)
                x += self._font.getlength(ch)

    def end_frame(self) -> None:
        self.frames_drawn += 1

    # -- output ---------------------------------------------------------------

    @property
    def image(self) -> Image.Image:
        return self._image

    def frame_bytes(self) -> bytes:
        """Raw rgb24 pixels of the current frame."""

        return self._image.tobytes()

    def save(self, path: Path) -> Path:
        self._image.save(path)
        return path
