import logging
import os
from typing import Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer


class ConfigFileEventHandler(FileSystemEventHandler):
    """Forwards create/modify/move events that concern one file"""

    def __init__(self, config_path: str, callback: Callable[[str], None]):
        super().__init__()
        self.config_path = os.path.abspath(config_path)
        self.callback = callback

    def _process_event(self, path) -> None:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if os.path.abspath(path) == self.config_path:
            self.callback(self.config_path)

    def on_created(self, event):
        if not event.is_directory:
            self._process_event(event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._process_event(event.src_path)

    def on_moved(self, event):
        # editors that save through a temp file end with a move onto the target
        if not event.is_directory:
            self._process_event(event.dest_path)


class ConfigFileWatcher:
    """
    Calls back whenever the configuration file is written

    The callback runs on the watchdog observer thread; callers living on an
    event loop must hand it over with loop.call_soon_threadsafe.
    """

    def __init__(self, config_path: str, callback: Callable[[str], None]):
        self.logger = logging.getLogger(__name__)
        self.config_path = os.path.abspath(config_path)
        self.event_handler = ConfigFileEventHandler(self.config_path, callback)
        self.observer: Optional[Observer] = None

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start(self) -> bool:
        if self.is_running:
            self.logger.debug(f"Already watching {self.config_path}")
            return True

        directory = os.path.dirname(self.config_path)
        if not os.path.isdir(directory):
            self.logger.warning(f"Config directory not found: {directory}")
            return False

        self.observer = Observer()
        self.observer.schedule(self.event_handler, directory, recursive=False)
        self.observer.start()
        self.logger.info(f"Watching configuration file {self.config_path}")
        return True

    def stop(self) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join()
        self.observer = None
        self.logger.info(f"Stopped watching configuration file {self.config_path}")
