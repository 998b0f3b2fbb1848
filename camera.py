"""Camera capture via OpenCV plus the aspect-ratio crop applied before display."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from errors import CaptureError
from models import Frame

try:
    import cv2
except Exception:  # pragma: no cover
    cv2 = None  # type: ignore

logger = logging.getLogger(__name__)

_ROTATIONS = {90: "ROTATE_90_CLOCKWISE", 180: "ROTATE_180", 270: "ROTATE_90_COUNTERCLOCKWISE"}


def crop_to_aspect(image: Any, target_ratio: float) -> Any:
    """Centre-crop ``image`` (HxW[xC] array) to width/height == target_ratio.

    Only the oversized axis is trimmed; the other one is kept whole.
    """
    if target_ratio <= 0:
        raise ValueError("target_ratio must be positive")
    height, width = image.shape[:2]
    if height == 0 or width == 0:
        return image
    if width / height > target_ratio:
        new_width = max(1, int(round(height * target_ratio)))
        left = (width - new_width) // 2
        return image[:, left:left + new_width]
    new_height = max(1, int(round(width / target_ratio)))
    if new_height >= height:
        return image
    top = (height - new_height) // 2
    return image[top:top + new_height, :]


class OpenCVCamera:
    """Grabs one still per ``capture()`` call; rotation corrects mounting orientation."""

    def __init__(self, index: int = 0, rotation: int = 0) -> None:
        self.index = index
        self.rotation = rotation % 360
        self._cap: Optional[Any] = None
        self._lock = threading.Lock()

    def capture(self) -> Frame:
        with self._lock:
            cap = self._open()
            ok, image = cap.read()
            if not ok or image is None:
                raise CaptureError(f"camera {self.index} returned no frame")
            if self.rotation:
                image = cv2.rotate(image, getattr(cv2, _ROTATIONS[self.rotation]))
            return Frame(image)

    def close(self) -> None:
        with self._lock:
            cap, self._cap = self._cap, None
            if cap is not None:
                cap.release()

    def _open(self) -> Any:
        if cv2 is None:
            raise CaptureError("opencv is not installed")
        if self._cap is None:
            cap = cv2.VideoCapture(self.index)
            if not cap.isOpened():
                cap.release()
                raise CaptureError(f"cannot open camera {self.index}")
            self._cap = cap
            logger.info("camera %d opened", self.index)
        return self._cap
