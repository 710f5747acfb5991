from __future__ import annotations

"""Client-side journal controller.

Coordinates the draft being written, voice transcription, saving, analysis and
destructive actions. Presentation layers (CLI, a future GUI) drive it and
receive feedback through a notifier callback; confirmations are explicit
request objects instead of blocking dialogs.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import threading
from typing import Any, Callable

from .analysis import analysis_title
from .client import ProxyClient
from .config import CONFIG
from .errors import JournalError
from .models import Entry
from .store import RecordStore
from .utils.time_utils import iso_timestamp, parse_timestamp

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    level: str  # "success", "warning" or "error"
    message: str


Notifier = Callable[[Notification], None]


def _log_notifier(notification: Notification) -> None:
    level = logging.ERROR if notification.level == "error" else logging.INFO
    _LOGGER.log(level, "%s: %s", notification.level, notification.message)


class PendingConfirmation:
    """A destructive action waiting for the user's answer.

    ``future`` resolves to True once the action ran, or False when it was
    declined or failed.
    """

    def __init__(
        self,
        prompt: str,
        action: Callable[[], Any],
        notify: Notifier,
    ) -> None:
        self.prompt = prompt
        self.future: Future[bool] = Future()
        self._action = action
        self._notify = notify

    @property
    def answered(self) -> bool:
        return self.future.done()

    def confirm(self) -> bool:
        if self.answered:
            return self.future.result()
        try:
            self._action()
        except JournalError as exc:
            self._notify(Notification("error", exc.message))
            self.future.set_result(False)
            return False
        except Exception:
            self.future.set_result(False)
            raise
        self.future.set_result(True)
        return True

    def decline(self) -> None:
        if not self.answered:
            self.future.set_result(False)


class JournalController:
    def __init__(
        self,
        store: RecordStore,
        proxy: ProxyClient,
        *,
        notifier: Notifier | None = None,
        min_text_length: int | None = None,
    ) -> None:
        self.store = store
        self.proxy = proxy
        self.min_text_length = (
            min_text_length if min_text_length is not None else CONFIG.min_text_length
        )
        self._notify = notifier or _log_notifier
        self.draft_text = ""
        self.draft_context = ""
        self.loading = False
        self._state_lock = threading.Lock()
        self._transcribing = False
        self._save_deferred = False
        # Single worker: at most one transcription in flight
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="transcribe"
        )

    @property
    def transcribing(self) -> bool:
        return self._transcribing

    def update_draft(self, text: str | None = None, context: str | None = None) -> None:
        if text is not None:
            self.draft_text = text
        if context is not None:
            self.draft_context = context

    # ------------------------------------------------------------------ save

    def save(self) -> Entry | None:
        """Save the current draft, or queue the save while a transcription runs."""

        with self._state_lock:
            if self._transcribing:
                self._save_deferred = True
                self._notify(Notification("warning", "Waiting for transcription..."))
                return None

        text = self.draft_text.strip()
        if not text:
            self._notify(Notification("error", "Please describe your dream first"))
            return None
        if len(text) < self.min_text_length:
            self._notify(
                Notification(
                    "error",
                    "Your dream should be at least "
                    f"{self.min_text_length} characters long",
                )
            )
            return None

        try:
            entry = self.store.save_entry(
                {"text": text, "context": self.draft_context, "date": iso_timestamp()}
            )
        except JournalError as exc:
            self._notify(Notification("error", f"Could not save entry: {exc.message}"))
            return None
        if entry is None:
            self._notify(Notification("error", "Storage is not available"))
            return None

        self.draft_text = ""
        self.draft_context = ""
        self._notify(Notification("success", "Dream saved"))
        return entry

    # --------------------------------------------------------- transcription

    def begin_transcription(
        self,
        audio: bytes,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> Future[str]:
        """Start transcribing in the background; resolves to the transcribed text."""

        with self._state_lock:
            if self._transcribing:
                raise RuntimeError("A transcription is already in progress")
            self._transcribing = True
        return self._executor.submit(
            self._run_transcription, audio, filename, content_type
        )

    def _run_transcription(self, audio: bytes, filename: str, content_type: str) -> str:
        text = ""
        succeeded = False
        try:
            text = self.proxy.transcribe(audio, filename, content_type)
            current = self.draft_text.strip()
            self.draft_text = f"{current} {text}" if current else text
            succeeded = True
            self._notify(Notification("success", "Transcription complete"))
        except JournalError as exc:
            self._notify(Notification("error", f"Transcription failed: {exc.message}"))
        finally:
            with self._state_lock:
                self._transcribing = False
                deferred = self._save_deferred
                self._save_deferred = False

        auto_save = bool(self.store.get_settings().get("autoSave", False))
        if deferred or (succeeded and auto_save):
            self.save()
        return text

    # -------------------------------------------------------------- analysis

    def analyze(
        self, entry_id: int, method: str, *, force: bool = False
    ) -> Entry | None:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            self._notify(Notification("error", "No entry selected for analysis"))
            return None

        title = analysis_title(method)
        existing = entry.analyses.get(method)
        if existing is not None and not force:
            produced = parse_timestamp(existing.timestamp).date().isoformat()
            self._notify(Notification("error", f"{title} already exists ({produced})"))
            return None

        self.loading = True
        try:
            result = self.proxy.analyze(entry.text, method, entry.context)
            saved = self.store.upsert_analysis(entry_id, method, result)
        except JournalError as exc:
            self._notify(Notification("error", f"Analysis failed: {exc.message}"))
            return None
        finally:
            self.loading = False
        self._notify(Notification("success", f"{title} complete"))
        return saved

    # ---------------------------------------------------- destructive actions

    def request_delete(self, entry_id: int) -> PendingConfirmation:
        def action() -> None:
            self.store.delete_entry(entry_id)
            self._notify(Notification("success", "Entry deleted"))

        return PendingConfirmation(
            "Delete this entry? This cannot be undone.", action, self._notify
        )

    def request_remove_analysis(
        self, entry_id: int, method: str
    ) -> PendingConfirmation:
        title = analysis_title(method)

        def action() -> None:
            self.store.remove_analysis(entry_id, method)
            self._notify(Notification("success", f"{title} deleted"))

        return PendingConfirmation(
            f"Delete the {title}? This cannot be undone.", action, self._notify
        )

    def request_remove_all_analyses(self, entry_id: int) -> PendingConfirmation:
        entry = self.store.get_entry(entry_id)
        count = len(entry.analyses) if entry else 0

        def action() -> None:
            self.store.remove_all_analyses(entry_id)
            self._notify(Notification("success", "All analyses deleted"))

        return PendingConfirmation(
            f"Delete all {count} analyses of this entry? This cannot be undone.",
            action,
            self._notify,
        )

    def request_clear_all(self) -> PendingConfirmation:
        def action() -> None:
            self.store.clear_all()
            self._notify(Notification("success", "All data deleted"))

        return PendingConfirmation(
            "Delete all entries and settings? This cannot be undone.",
            action,
            self._notify,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
