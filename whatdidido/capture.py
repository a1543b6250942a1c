from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from PIL import Image, ImageGrab

from .paths import thumbnail_path

THUMBNAIL_SIZE = (480, 270)
MAX_ANALYSIS_WIDTH = 1920


@dataclass(frozen=True)
class CapturedScreen:
    captured_at: datetime
    image_bytes: bytes
    thumbnail_path: Path


class ScreenCapture:
    """Grabs all screens, keeps a JPEG in memory for analysis and a thumbnail on disk."""

    def __init__(
        self,
        thumbnails_root: Path | None = None,
        grabber: Callable[[], Image.Image] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._thumbnails_root = thumbnails_root
        self._grabber = grabber or (lambda: ImageGrab.grab(all_screens=True))
        self._clock = clock or (lambda: datetime.now().astimezone())

    def grab(self) -> CapturedScreen:
        captured_at = self._clock()
        image = self._grabber()
        if image.mode != "RGB":
            image = image.convert("RGB")

        target = thumbnail_path(captured_at, self._thumbnails_root)
        thumb = image.copy()
        thumb.thumbnail(THUMBNAIL_SIZE)
        thumb.save(target, format="JPEG", quality=80, optimize=True)

        return CapturedScreen(
            captured_at=captured_at,
            image_bytes=_encode_for_analysis(image),
            thumbnail_path=target,
        )


def _encode_for_analysis(image: Image.Image) -> bytes:
    if image.width > MAX_ANALYSIS_WIDTH:
        ratio = MAX_ANALYSIS_WIDTH / image.width
        image = image.resize((MAX_ANALYSIS_WIDTH, max(1, int(image.height * ratio))))
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=85, optimize=True)
    return buffer.getvalue()
