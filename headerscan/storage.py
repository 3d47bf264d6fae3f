from __future__ import annotations

import csv
import json
import queue
import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, TextIO

from .models import ScanResult

CSV_COLUMNS = ["URL", "Timestamp", "Score", "Header", "Issue", "Severity", "Fix"]


class StorageBase(ABC):
    """Abstract base class for scan result writers.

    write() may be called from any worker thread; close() flushes and
    releases the output file.
    """

    @abstractmethod
    def write(self, result: ScanResult) -> None:
        """Persist a single scan result."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending writes and release resources."""

    def __enter__(self) -> "StorageBase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class JsonlStorage(StorageBase):
    """Streams results as JSON Lines using a background writer thread."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._queue: queue.Queue[Optional[ScanResult]] = queue.Queue()
        self._thread = threading.Thread(target=self._writer, daemon=True)
        self._thread.start()

    def write(self, result: ScanResult) -> None:
        """Enqueue a result for background writing."""
        self._queue.put(result)

    def close(self) -> None:
        """Signal the writer thread to flush and stop."""
        self._queue.put(None)
        self._thread.join(timeout=5)

    def _writer(self) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            while True:
                item = self._queue.get()
                if item is None:
                    break
                f.write(json.dumps(item.to_dict(), ensure_ascii=False) + "\n")
                f.flush()


class _BufferedStorage(StorageBase):
    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._results: List[ScanResult] = []
        self._closed = False

    def write(self, result: ScanResult) -> None:
        with self._lock:
            self._results.append(result)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            results = list(self._results)
        self._flush(results)

    @abstractmethod
    def _flush(self, results: List[ScanResult]) -> None:
        ...


class JsonStorage(_BufferedStorage):
    """Writes all results as one pretty-printed JSON array on close."""

    def _flush(self, results: List[ScanResult]) -> None:
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump([r.to_dict() for r in results], f, indent=2, ensure_ascii=False)
            f.write("\n")


def write_csv(results: Iterable[ScanResult], stream: TextIO) -> None:
    """One row per finding; results without findings get a single "No issues" row."""
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)
    for result in results:
        if not result.findings:
            writer.writerow([result.url, result.timestamp, result.score, "", "No issues", "", ""])
            continue
        for finding in result.findings:
            writer.writerow(
                [
                    result.url,
                    result.timestamp,
                    result.score,
                    finding.header,
                    finding.issue,
                    finding.severity.value,
                    finding.recommended_fix or "",
                ]
            )


class CsvStorage(_BufferedStorage):
    def _flush(self, results: List[ScanResult]) -> None:
        with open(self._path, "w", encoding="utf-8", newline="") as f:
            write_csv(results, f)


def create_storage(fmt: str, path: str) -> StorageBase:
    if fmt == "json":
        return JsonStorage(path)
    if fmt == "jsonl":
        return JsonlStorage(path)
    if fmt == "csv":
        return CsvStorage(path)
    raise ValueError(f"Unsupported output format: {fmt}")
