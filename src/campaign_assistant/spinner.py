import sys
import threading
from typing import TextIO

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

PLANNING_LABEL = " Planning..."
REPLY_LABEL = " Writing reply..."

_TOOL_LABELS = {
    "ask_campaign_type": " Clarifying your campaign...",
    "suggest_templates": " Finding templates...",
    "select_template": " Applying template...",
    "request_recipients": " Preparing recipient request...",
    "validate_recipients": " Checking recipients...",
    "review_campaign": " Reviewing campaign...",
    "confirm_queue_campaign": " Queueing campaign...",
    "compose_signature_email": " Drafting signature email...",
}


def label_for_tool(tool: str) -> str:
    return _TOOL_LABELS.get(tool, REPLY_LABEL)


class Spinner:
    """Shows the turn's current step until the first reply token arrives.

    The label can change while running (planning, then the chosen tool);
    ``stop`` clears the widest label shown so no stale text is left behind.
    """

    def __init__(self, prefix: str = "", label: str = PLANNING_LABEL, stream: TextIO | None = None):
        self._prefix = prefix
        self._label = label
        self._stream = stream or sys.stdout
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._frame_width = 1 + len(label)

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    @property
    def label(self) -> str:
        return self._label

    def set_label(self, label: str) -> None:
        with self._lock:
            self._label = label
            self._frame_width = max(self._frame_width, 1 + len(label))

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        if self._thread:
            self._thread.join()
        with self._lock:
            clear = self._prefix + " " * self._frame_width
        self._stream.write("\r" + clear + "\r" + self._prefix)
        self._stream.flush()

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                with self._lock:
                    # Pad to the widest label so a shorter one fully covers the last frame.
                    frame = (_SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label).ljust(self._frame_width)
                    self._stream.write("\r" + self._prefix + frame)
                    self._stream.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            return
