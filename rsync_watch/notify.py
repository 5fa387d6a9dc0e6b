"""Desktop notification helper for Rsync Watch.

On macOS, posts a Notification Center banner through ``osascript``.
On Linux, uses ``notify-send`` when it is installed.  On Windows,
uses accessible_output2 to speak the message through the active
screen reader.  Elsewhere the notifications are silently discarded.
"""

import logging
import shutil
import subprocess

from rsync_watch.platform_utils import IS_LINUX, IS_MACOS, IS_WINDOWS

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "RSYNC"
SUCCESS_MESSAGE = "Synced successfully."
ERROR_MESSAGE = "Sync Failed."

# ---- accessible_output2 (Windows screen readers) ----
_HAS_AO2 = False
if IS_WINDOWS:
    try:
        from accessible_output2.outputs.auto import (
            Auto as _AO2Auto,  # type: ignore[import-untyped]
        )

        _HAS_AO2 = True
    except ImportError:
        logger.warning(
            "accessible_output2 not installed; Windows notifications disabled."
        )


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class DesktopNotifier:
    """Cross-platform, fire-and-forget desktop notifier.

    - macOS: ``osascript -e 'display notification …'``
    - Linux: ``notify-send`` (libnotify)
    - Windows: accessible_output2 (JAWS / NVDA / Narrator)
    - Other: silent no-op

    ``notify`` never blocks and never raises; delivery failures are
    logged at DEBUG level.
    """

    def __init__(self) -> None:
        """Detect the available notification backend."""
        self._output = _AO2Auto() if _HAS_AO2 else None  # type: ignore[name-defined]
        self._notify_send = shutil.which("notify-send") if IS_LINUX else None

    def _command(self, title: str, message: str) -> list[str] | None:
        if IS_MACOS:
            script = (
                f"display notification {_applescript_quote(message)} "
                f"with title {_applescript_quote(title)}"
            )
            return ["osascript", "-e", script]
        if self._notify_send:
            return [self._notify_send, title, message]
        return None

    def notify(self, title: str, message: str) -> None:
        """Show *message* under *title* using the platform backend."""
        try:
            if self._output:
                self._output.speak(f"{title}: {message}", interrupt=False)
                logger.debug("SR spoke: %s", message)
                return

            cmd = self._command(title, message)
            if cmd is None:
                logger.debug("Desktop notify (no backend): %s", message)
                return
            subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            logger.debug("Desktop notify: %s", message)
        except Exception:
            logger.debug("Desktop notification failed.", exc_info=True)

    def sync_succeeded(self) -> None:
        self.notify(NOTIFICATION_TITLE, SUCCESS_MESSAGE)

    def sync_failed(self) -> None:
        self.notify(NOTIFICATION_TITLE, ERROR_MESSAGE)

    @property
    def available(self) -> bool:
        """True if a notification backend is available."""
        return self._output is not None or IS_MACOS or bool(self._notify_send)
