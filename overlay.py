"""Windows showing the published photo + caption and the keyword prompt."""

from __future__ import annotations

from typing import Any, Callable, Optional

from models import PublishedView

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    from PySide6.QtCore import Qt
    from PySide6.QtGui import QImage, QPixmap
    from PySide6.QtWidgets import QLabel, QMessageBox, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QImage = None  # type: ignore
    QPixmap = None  # type: ignore
    QMessageBox = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

LOADING_TEXT = "Loading speech model..."


def frame_to_qimage(image: Any) -> "QImage":
    """Copy a BGR numpy frame into a standalone RGB QImage."""
    rgb = np.ascontiguousarray(image[..., ::-1])
    height, width = rgb.shape[:2]
    return QImage(rgb.data, width, height, 3 * width, QImage.Format_RGB888).copy()


class CaptionWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowTitle("Live Caption")
        self.setStyleSheet("background: black;")

        self._photo = QLabel("")
        self._photo.setAlignment(Qt.AlignCenter)
        self._photo.setStyleSheet("color: white; font-size: 16px;")

        self._caption = QLabel("")
        self._caption.setWordWrap(True)
        self._caption.setAlignment(Qt.AlignCenter)
        self._caption.setStyleSheet(
            "color: white; font-size: 24px; padding: 8px 16px;"
            "background: rgba(0,0,0,150); border-radius: 12px;"
        )
        self._caption.hide()

        layout = QVBoxLayout()
        layout.setContentsMargins(24, 24, 24, 24)
        layout.addWidget(self._caption, 0, Qt.AlignTop)
        layout.addWidget(self._photo, 1)
        self.setLayout(layout)
        self._pixmap: Optional[QPixmap] = None

    def show_view(self, view: PublishedView) -> None:
        """Render a snapshot; loading and frameless views get a black placeholder."""
        if view.loading:
            self._pixmap = None
            self._photo.setPixmap(QPixmap())
            self._photo.setText(LOADING_TEXT)
        elif view.frame is not None and not view.frame.discarded:
            self._pixmap = QPixmap.fromImage(frame_to_qimage(view.frame.image))
            self._photo.setText("")
            self._rescale()
        else:
            self._pixmap = None
            self._photo.setPixmap(QPixmap())
            self._photo.setText("")

        self._caption.setText(view.caption)
        self._caption.setVisible(bool(view.caption))

    def resizeEvent(self, event: Any) -> None:  # noqa: N802
        super().resizeEvent(event)
        self._rescale()

    def _rescale(self) -> None:
        if self._pixmap is None:
            return
        self._photo.setPixmap(
            self._pixmap.scaled(self._photo.size(), Qt.KeepAspectRatioByExpanding, Qt.SmoothTransformation)
        )


def ask_keyword_action(parent: Any, keyword: str, on_choice: Callable[[bool], None]) -> None:
    """Ask whether to accept the detected keyword; reports True for accept."""
    if QMessageBox is None:
        raise RuntimeError("PySide6 is not installed")
    box = QMessageBox(parent)
    box.setWindowTitle("Keyword detected")
    box.setText(f"“{keyword}” was heard. Choose what to do next.")
    accept = box.addButton("Accept", QMessageBox.AcceptRole)
    box.addButton("Reject", QMessageBox.RejectRole)
    box.exec()
    on_choice(box.clickedButton() is accept)
