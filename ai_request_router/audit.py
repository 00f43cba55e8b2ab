from __future__ import annotations

import json
import time
from pathlib import Path
from queue import Empty, Full, Queue
from threading import Lock, Thread
from typing import Any

_STOP = object()
_BATCH_SIZE = 256


def _encode(record: dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=True, separators=(",", ":"), default=str)


class JsonlAuditLogger:
    """Append routing events to a JSONL file from a background writer thread.

    Instances are callable so they can be passed directly as the router's
    ``audit_hook``. Routing never waits on disk: when the queue is full the
    event is dropped and counted, and the count is written as one final
    record on close.
    """

    def __init__(
        self,
        path: str | Path,
        enabled: bool = True,
        max_queue_size: int = 8192,
    ) -> None:
        self.enabled = enabled
        self.path = Path(path)
        self._counter_lock = Lock()
        self._dropped = 0
        self._written = 0
        self._queue: Queue[object] = Queue(maxsize=max(1, max_queue_size))
        self._writer: Thread | None = None
        self._closed = not enabled
        if enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = Thread(
                target=self._write_loop, name="router-audit-writer", daemon=True
            )
            self._writer.start()

    def __call__(self, event: dict[str, Any]) -> None:
        self.log(event)

    @property
    def dropped_records(self) -> int:
        with self._counter_lock:
            return self._dropped

    @property
    def records_written(self) -> int:
        with self._counter_lock:
            return self._written

    def log(self, event: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait({"ts": round(time.time(), 3), **event})
        except Full:
            with self._counter_lock:
                self._dropped += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        if self._writer is not None:
            self._writer.join(timeout=2.0)

    def __enter__(self) -> JsonlAuditLogger:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _next_batch(self) -> tuple[list[dict[str, Any]], bool]:
        batch: list[dict[str, Any]] = []
        item = self._queue.get()
        while True:
            if item is _STOP:
                return batch, True
            batch.append(item)  # type: ignore[arg-type]
            if len(batch) >= _BATCH_SIZE:
                return batch, False
            try:
                item = self._queue.get_nowait()
            except Empty:
                return batch, False

    def _write_loop(self) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            stopping = False
            while not stopping:
                batch, stopping = self._next_batch()
                if batch:
                    handle.write("".join(_encode(record) + "\n" for record in batch))
                    handle.flush()
                    with self._counter_lock:
                        self._written += len(batch)

            with self._counter_lock:
                dropped, self._dropped = self._dropped, 0
            if dropped:
                handle.write(
                    _encode(
                        {
                            "ts": round(time.time(), 3),
                            "event": "audit_logger_dropped_records",
                            "dropped_count": dropped,
                        }
                    )
                    + "\n"
                )
                handle.flush()
