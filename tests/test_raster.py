from pathlib import Path

from PIL import Image

from notetrail.raster import BACKGROUND, CHANNEL_COLORS, RasterRenderer


def test_frame_bytes_are_rgb24() -> None:
    renderer = RasterRenderer(width=180, height=320)
    renderer.begin_frame(0.0)
    renderer.end_frame()
    assert len(renderer.frame_bytes()) == 180 * 320 * 3
    assert renderer.image.getpixel((0, 0)) == BACKGROUND
    assert renderer.frames_drawn == 1


def test_nodes_are_drawn_in_channel_colour_and_cleared_per_frame() -> None:
    renderer = RasterRenderer(width=180, height=320)
    x, y = renderer.node_xy(3)

    renderer.begin_frame(0.0)
    renderer.draw_node("minor", 3, active=True)
    renderer.end_frame()
    assert renderer.image.getpixel((int(x), int(y))) == CHANNEL_COLORS["minor"]

    renderer.begin_frame(0.1)
    renderer.end_frame()
    assert renderer.image.getpixel((int(x), int(y))) != CHANNEL_COLORS["minor"]


def test_caption_and_segments_change_the_frame(tmp_path: Path) -> None:
    renderer = RasterRenderer(width=180, height=320)
    renderer.begin_frame(0.0)
    blank = renderer.frame_bytes()

    renderer.draw_segment("text", 0, 6)
    renderer.draw_caption("Hello", (0, 1))
    renderer.draw_caption("", None)
    renderer.end_frame()

    assert renderer.frame_bytes() != blank
    path = renderer.save(tmp_path / "frame.png")
    with Image.open(path) as img:
        assert img.size == (180, 320)
