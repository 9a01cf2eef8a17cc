from __future__ import annotations

from typing import Callable, Optional

from PySide6.QtCore import QObject, Qt, QUrl, Signal, Slot
from PySide6.QtGui import QCloseEvent
from PySide6.QtWebEngineWidgets import QWebEngineView
from PySide6.QtWidgets import QVBoxLayout, QWidget

WINDOW_TITLE = "Sign in to Gitea"


class _OAuthBrowserWindow(QWidget):
    userClosed = Signal()

    def __init__(self, url: str, parent: Optional[QWidget] = None):
        super().__init__(parent, Qt.Window)
        self.setWindowTitle(WINDOW_TITLE)
        self.resize(980, 820)
        self._closing_programmatically = False

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        self.web_view = QWebEngineView(self)
        layout.addWidget(self.web_view)
        self.web_view.setUrl(QUrl(url))

    def close_quietly(self) -> None:
        self._closing_programmatically = True
        self.close()

    def closeEvent(self, event: QCloseEvent) -> None:
        if not self._closing_programmatically:
            self.userClosed.emit()
        super().closeEvent(event)


class QtOAuthBrowserSurface(QObject):
    """
    Browser surface for the OAuth login backed by an embedded web view.

    ``open`` and ``close`` are called from the login worker thread; they are
    marshalled to the GUI thread through queued signals. Construct this object
    on the GUI thread.
    """

    _openRequested = Signal(str)
    _closeRequested = Signal()

    def __init__(self, parent_widget: Optional[QWidget] = None, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._parent_widget = parent_widget
        self._window: _OAuthBrowserWindow | None = None
        self._on_closed: Callable[[], None] | None = None
        self._openRequested.connect(self._show, Qt.QueuedConnection)
        self._closeRequested.connect(self._hide, Qt.QueuedConnection)

    def open(self, url: str, on_closed: Callable[[], None]) -> None:
        self._on_closed = on_closed
        self._openRequested.emit(str(url))

    def close(self) -> None:
        self._closeRequested.emit()

    @Slot(str)
    def _show(self, url: str) -> None:
        self._hide()
        window = _OAuthBrowserWindow(url, self._parent_widget)
        window.setAttribute(Qt.WA_DeleteOnClose, True)
        window.userClosed.connect(self._handle_user_closed)
        self._window = window
        window.show()
        window.raise_()
        window.activateWindow()

    @Slot()
    def _hide(self) -> None:
        window = self._window
        self._window = None
        if window is not None:
            window.close_quietly()

    @Slot()
    def _handle_user_closed(self) -> None:
        self._window = None
        callback = self._on_closed
        self._on_closed = None
        if callback is not None:
            callback()
