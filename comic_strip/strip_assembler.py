"""
Comic Strip - Strip Assembler.

Presentation helpers for downloads, kept out of the generation core:
- compose_strip(): all panels side by side with captions, as one JPEG
- save_panels(): individual panel files (comic-panel-N.jpeg)

Uses Pillow for all image manipulation.
"""

import base64
import binascii
import io
import logging
import os
import textwrap
from pathlib import Path
from typing import Optional, Sequence

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from comic_strip.models import ComicPanel

logger = logging.getLogger(__name__)

# Layout constants (16:9 panels in a single row)
PANEL_WIDTH = 800
PANEL_HEIGHT = PANEL_WIDTH * 9 // 16
TEXT_HEIGHT = 70
PANEL_GAP = 20
STRIP_PADDING = 30
BORDER_WIDTH = 2

BACKGROUND_COLOR = (17, 24, 39)
CONTAINER_COLOR = (31, 41, 55)
BORDER_COLOR = (55, 65, 81)
CAPTION_COLOR = (255, 255, 255)
PLACEHOLDER_COLOR = (75, 85, 99)
PLACEHOLDER_TEXT_COLOR = (156, 163, 175)

CAPTION_FONT_SIZE = 20
JPEG_QUALITY = 95

# Font paths: bundled first, then common system locations
FONTS_DIR = Path(__file__).parent / "assets" / "fonts"
FONT_DIRS = [
    FONTS_DIR,
    Path("/usr/share/fonts/truetype/dejavu"),
    Path("/usr/share/fonts/truetype"),
    Path("/usr/share/fonts"),
    Path.home() / ".local" / "share" / "fonts",
    Path(os.environ.get("WINDIR", "C:\\Windows")) / "Fonts",
]
CAPTION_FONTS = ["Inter-Italic.ttf", "DejaVuSans-Oblique.ttf", "ariali.ttf"]


class StripAssembler:
    """Draws ComicPanels into downloadable images."""

    def __init__(self):
        self._caption_font: Optional[ImageFont.ImageFont] = None

    def _load_font(self, candidates: list[str], size: int):
        """Load the first available font, falling back to Pillow's default."""
        for font_name in candidates:
            for font_dir in FONT_DIRS:
                font_path = font_dir / font_name
                if font_path.exists():
                    return ImageFont.truetype(str(font_path), size)

        logger.warning(
            f"No caption font found, using default. "
            f"Place .ttf files in {FONTS_DIR} for better results."
        )
        return ImageFont.load_default(size=size)

    @property
    def caption_font(self):
        if self._caption_font is None:
            self._caption_font = self._load_font(CAPTION_FONTS, CAPTION_FONT_SIZE)
        return self._caption_font

    def compose_strip(self, panels: Sequence[ComicPanel]) -> bytes:
        """
        Lay all panels out in one row with their captions underneath.

        Args:
            panels: Panels in strip order (failed panels get a placeholder)

        Returns:
            JPEG bytes of the assembled strip
        """
        if not panels:
            raise ValueError("No panels to assemble")

        count = len(panels)
        width = PANEL_WIDTH * count + PANEL_GAP * (count - 1) + STRIP_PADDING * 2
        height = PANEL_HEIGHT + TEXT_HEIGHT + STRIP_PADDING * 2

        strip = Image.new("RGB", (width, height), BACKGROUND_COLOR)
        draw = ImageDraw.Draw(strip)

        for index, panel in enumerate(panels):
            x = STRIP_PADDING + index * (PANEL_WIDTH + PANEL_GAP)
            y = STRIP_PADDING

            # Panel container
            half_gap = PANEL_GAP // 2
            draw.rectangle(
                [x - half_gap, y - half_gap,
                 x + PANEL_WIDTH + half_gap, y + PANEL_HEIGHT + TEXT_HEIGHT + half_gap],
                fill=CONTAINER_COLOR,
                outline=BORDER_COLOR,
                width=BORDER_WIDTH,
            )

            image = decode_panel_image(panel.image) if panel.image else None
            if image is not None:
                strip.paste(self._fit_image(image, PANEL_WIDTH, PANEL_HEIGHT), (x, y))
            else:
                draw.rectangle([x, y, x + PANEL_WIDTH, y + PANEL_HEIGHT], fill=PLACEHOLDER_COLOR)
                self._draw_centered(
                    draw, f"Panel {index + 1} unavailable",
                    x + PANEL_WIDTH // 2, y + PANEL_HEIGHT // 2,
                    fill=PLACEHOLDER_TEXT_COLOR,
                )

            if panel.text:
                self._draw_centered(
                    draw, f'"{panel.text}"',
                    x + PANEL_WIDTH // 2, y + PANEL_HEIGHT + TEXT_HEIGHT // 2,
                    fill=CAPTION_COLOR,
                    wrap_width=PANEL_WIDTH // 11,
                )

        output = io.BytesIO()
        strip.save(output, format="JPEG", quality=JPEG_QUALITY)
        logger.info(f"Strip assembled: {count} panels, {width}x{height}")
        return output.getvalue()

    def save_panels(self, panels: Sequence[ComicPanel], output_dir: str) -> list[str]:
        """Write each rendered panel to output_dir. Returns the written paths."""
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        paths = []

        for index, panel in enumerate(panels):
            data = decode_data_uri(panel.image) if panel.image else None
            if not data:
                logger.warning(f"Panel {index + 1} has no image, skipping")
                continue

            output_path = str(Path(output_dir) / f"comic-panel-{index + 1}.jpeg")
            with open(output_path, "wb") as f:
                f.write(data)
            paths.append(output_path)

        logger.info(f"Saved {len(paths)} panels to {output_dir}")
        return paths

    def _fit_image(self, img: Image.Image, target_w: int, target_h: int) -> Image.Image:
        """Resize and crop image to fit target dimensions (cover mode)."""
        img = img.convert("RGB")
        scale = max(target_w / img.width, target_h / img.height)

        new_w = max(target_w, int(img.width * scale))
        new_h = max(target_h, int(img.height * scale))
        img = img.resize((new_w, new_h), Image.Resampling.LANCZOS)

        # Center crop
        left = (new_w - target_w) // 2
        top = (new_h - target_h) // 2
        return img.crop((left, top, left + target_w, top + target_h))

    def _draw_centered(
        self,
        draw: ImageDraw.ImageDraw,
        text: str,
        cx: int,
        cy: int,
        fill: tuple,
        wrap_width: int = 60,
    ):
        """Draw (wrapped) text centered on (cx, cy)."""
        wrapped = textwrap.fill(text, width=wrap_width, max_lines=2, placeholder="...")
        bbox = draw.multiline_textbbox((0, 0), wrapped, font=self.caption_font, align="center")
        text_w = bbox[2] - bbox[0]
        text_h = bbox[3] - bbox[1]
        draw.multiline_text(
            (cx - text_w // 2 - bbox[0], cy - text_h // 2 - bbox[1]),
            wrapped,
            fill=fill,
            font=self.caption_font,
            align="center",
        )


def decode_data_uri(uri: str) -> Optional[bytes]:
    """Return the bytes behind a base64 data URI, or None if it isn't one."""
    if not uri.startswith("data:") or ";base64," not in uri:
        return None
    try:
        return base64.b64decode(uri.split(";base64,", 1)[1], validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_panel_image(uri: str) -> Optional[Image.Image]:
    """Load a panel's data URI as a Pillow image (None when unusable)."""
    data = decode_data_uri(uri)
    if not data:
        return None
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not decode panel image: {e}")
        return None


def compose_strip(panels: Sequence[ComicPanel]) -> bytes:
    """Assemble panels into a single JPEG strip."""
    return StripAssembler().compose_strip(panels)
