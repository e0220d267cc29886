import asyncio
import json
from pathlib import Path

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer


class JsonWriter:
    def __init__(self, outdir: str):
        self.outdir = Path(outdir)
        self.outdir.mkdir(parents=True, exist_ok=True)

    def write(self, filename: str, payload: dict) -> str:
        p = self.outdir / filename
        p.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        return str(p)


class InboxWatcher:
    """Hands the path of every matching inbox file to ``on_path_async`` on the service loop.

    Reading happens on the loop, never in the observer thread. A file can be
    announced several times while an exporter writes it (created, modified,
    closed); the consumer skips paths that are empty or already gone.
    """

    def __init__(self, inbox: str, glob: str, on_path_async, loop: asyncio.AbstractEventLoop):
        self.inbox = Path(inbox)
        self.inbox.mkdir(parents=True, exist_ok=True)
        self.loop = loop
        self.on_path_async = on_path_async
        self.handler = PatternMatchingEventHandler(patterns=[glob], ignore_directories=True)

        self.handler.on_created = self._on_written
        self.handler.on_modified = self._on_written
        self.handler.on_closed = self._on_written
        self.handler.on_moved = lambda e: self._dispatch(e.dest_path)

        self.observer = Observer()

    def _on_written(self, event: FileSystemEvent):
        self._dispatch(event.src_path)

    def _dispatch(self, path):
        asyncio.run_coroutine_threadsafe(self.on_path_async(str(path)), self.loop)

    def start(self):
        self.observer.schedule(self.handler, str(self.inbox), recursive=False)
        self.observer.start()

    def stop(self):
        self.observer.stop()
        self.observer.join()
