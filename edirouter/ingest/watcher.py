"""Filesystem watcher for the EDI drop folder.

Uses the ``watchdog`` library (inotify on Linux, FSEvents on macOS, or the
polling observer when requested) to detect files landing in ``incoming/``.
Observer callbacks only enqueue paths. A single watch loop thread coalesces
repeated events per file until no new event has arrived for the settle delay,
then hands the file to a worker pool so that a slow move or parse never
holds up event intake.
"""

import logging
import os
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from edirouter.ingest.pipeline import IngestInterrupted, IngestionPipeline
from edirouter.schemas.ingest import FileProcessedEvent

logger = logging.getLogger(__name__)

# How long the watch loop blocks on the event queue before re-checking the stop flag
LOOP_TIMEOUT_SECONDS = 0.25

MAX_TRACKED_PATHS = 1024


class IncomingFolderHandler(FileSystemEventHandler):
    """Pushes file paths from observer events onto a bounded queue.

    When the queue is full the event is dropped and ``overflowed`` is set so
    the watch loop can resync from the directory listing.
    """

    def __init__(self, incoming_dir: Path, events: "queue.Queue[Path]") -> None:
        super().__init__()
        self._incoming_dir = incoming_dir
        self._events = events
        self.overflowed = threading.Event()

    def _enqueue(self, src_path: str | bytes) -> None:
        path = self._incoming_dir / Path(os.fsdecode(src_path)).name
        try:
            self._events.put_nowait(path)
        except queue.Full:
            self.overflowed.set()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._enqueue(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._enqueue(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Files renamed into the folder count as new arrivals."""
        if event.is_directory:
            return
        # Moves out of the folder (our own claims) are reported here too
        destination = Path(os.fsdecode(event.dest_path))
        if destination.parent.resolve() == self._incoming_dir.resolve():
            self._enqueue(event.dest_path)


class DirectoryWatcher:
    """Sweeps ``incoming/`` at startup, then watches it until stopped.

    Usage::

        watcher = DirectoryWatcher(pipeline)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(self, pipeline: IngestionPipeline) -> None:
        self.pipeline = pipeline
        self.settings = pipeline.settings
        self._running = threading.Event()
        self._events: queue.Queue[Path] = queue.Queue(maxsize=self.settings.max_pending)
        self._handler = IncomingFolderHandler(self.settings.incoming_path, self._events)
        self._observer = None
        self._loop_thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._slots = threading.BoundedSemaphore(self.settings.max_pending)
        self._in_flight: set[Path] = set()
        self._in_flight_lock = threading.Lock()
        # path -> monotonic settle deadline, owned by the watch loop thread
        self._pending: dict[Path, float] = {}

    def is_running(self) -> bool:
        return self._running.is_set()

    # ------------------------------------------------------------------
    # Startup sweep
    # ------------------------------------------------------------------

    def existing_files(self) -> list[Path]:
        incoming = self.settings.incoming_path
        if not incoming.is_dir():
            return []
        return sorted(p for p in incoming.iterdir() if p.is_file())

    def run_once(self) -> list[FileProcessedEvent]:
        """Create the directories and process what is already in ``incoming/``.

        Returns the outcome events of the sweep, in processing order.
        """
        self.pipeline.ensure_directories()
        results: list[FileProcessedEvent] = []
        with self.pipeline.events.subscribe(results.append):
            self._sweep()
        return results

    def _sweep(self) -> int:
        files = self.existing_files()
        logger.info("Scanning for existing files in: %s", self.settings.incoming_path)
        archived = 0
        for path in files:
            logger.info("Processing existing file: %s", path.name)
            if self.pipeline.process(path):
                archived += 1
        logger.info("Processed %d existing file(s) on startup", archived)
        return archived

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Prepare directories, sweep existing files, then start watching.

        Raises:
            IngestSetupError: If the managed directories cannot be created.
        """
        if self.is_running():
            logger.warning("File monitor is already running")
            return

        # A previous stop(abort=True) must not interrupt this run's retries
        self.pipeline.reset_cancel()
        self._pending.clear()
        self.pipeline.ensure_directories()
        self._sweep()

        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="edi-ingest"
        )
        self._observer = self._make_observer()
        self._observer.schedule(self._handler, str(self.settings.incoming_path), recursive=False)
        self._observer.start()
        self._running.set()

        self._loop_thread = threading.Thread(
            target=self._watch_loop, name="edi-watch-loop", daemon=True
        )
        self._loop_thread.start()
        logger.info("Started directory watcher for: %s", self.settings.incoming_path)

    def _make_observer(self):
        if self.settings.use_polling:
            return PollingObserver(timeout=self.settings.poll_interval_ms / 1000)
        return Observer()

    def stop(self, *, abort: bool = False) -> None:
        """Stop watching. Files already dispatched are allowed to finish.

        With ``abort=True`` pending move retries are cancelled instead of
        waited out.
        """
        if not self.is_running() and self._observer is None:
            return
        logger.info("Stopping file monitor...")
        self._running.clear()
        if abort:
            self.pipeline.cancel()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._loop_thread is not None and self._loop_thread is not threading.current_thread():
            self._loop_thread.join()
        self._loop_thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("File monitor stopped")

    def _watch_loop(self) -> None:
        try:
            while self._running.is_set():
                if self._handler.overflowed.is_set():
                    self._handler.overflowed.clear()
                    logger.warning("Directory watch overflow - some events were lost, resyncing")
                    for path in self.existing_files():
                        self.note_event(path)

                try:
                    path = self._events.get(timeout=self._next_wait())
                except queue.Empty:
                    pass
                else:
                    self.note_event(path)
                    # Coalesce whatever else has queued up behind it
                    while True:
                        try:
                            self.note_event(self._events.get_nowait())
                        except queue.Empty:
                            break

                for path in self.settled_paths():
                    self.handle_file_event(path)
        except Exception:
            logger.exception("Error in file monitor loop - stopping watcher")
            self._running.clear()

    def note_event(self, path: Path, now: float | None = None) -> bool:
        """Record an event for ``path`` and push back its settle deadline.

        Returns True if the path was already waiting to settle, i.e. the
        event was debounced into the pending one.
        """
        now = time.monotonic() if now is None else now
        debounced = path in self._pending
        if debounced:
            logger.debug("Debounced event for %s", path.name)
        elif len(self._pending) >= MAX_TRACKED_PATHS:
            # Too many files settling at once; the resync sweep will pick up the rest
            self._handler.overflowed.set()
            return False
        self._pending[path] = now + self.settings.settle_delay_ms / 1000
        return debounced

    def settled_paths(self, now: float | None = None) -> list[Path]:
        """Remove and return the pending paths whose settle deadline has passed."""
        now = time.monotonic() if now is None else now
        due = [p for p, deadline in self._pending.items() if deadline <= now]
        for path in due:
            del self._pending[path]
        return due

    def _next_wait(self) -> float:
        if not self._pending:
            return LOOP_TIMEOUT_SECONDS
        remaining = min(self._pending.values()) - time.monotonic()
        return min(LOOP_TIMEOUT_SECONDS, max(remaining, 0.0))

    def handle_file_event(self, path: Path) -> Future | None:
        """Re-check and dispatch one settled file.

        Returns the dispatched future, or None if the event was skipped.
        """
        if not path.is_file() or not os.access(path, os.R_OK):
            logger.debug("File no longer exists or is not readable: %s", path)
            return None

        with self._in_flight_lock:
            if path in self._in_flight:
                logger.debug("Already processing %s", path.name)
                return None
            self._in_flight.add(path)

        logger.info("Detected new/modified file: %s", path.name)
        return self._dispatch(path)

    def _dispatch(self, path: Path) -> Future | None:
        if self._executor is None:
            self._release(path)
            return None
        self._slots.acquire()
        try:
            future = self._executor.submit(self._process, path)
        except RuntimeError:
            # Executor already shut down by stop()
            self._slots.release()
            self._release(path)
            return None
        return future

    def _process(self, path: Path) -> bool:
        try:
            return self.pipeline.process(path)
        except IngestInterrupted:
            logger.info("Processing of %s interrupted by shutdown", path.name)
            return False
        except Exception:
            logger.exception("Error processing file %s", path)
            return False
        finally:
            self._slots.release()
            self._release(path)

    def _release(self, path: Path) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(path)
