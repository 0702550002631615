"""Logging and operation metrics for the note store.

Every store operation runs inside :func:`timed_operation`, which tags its
log lines with a short correlation id and feeds a process-wide
:class:`MetricsCollector`. File logging with rotation is opt-in through
:func:`configure_logging` (the CLI entry point calls it).
"""
import json
import logging
import os
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".foldernotes" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".foldernotes" / "metrics.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating file handler to the ``foldernotes`` logger.

    Args:
        log_dir: Directory for ``foldernotes.log``. Defaults to
            ``~/.foldernotes/logs``.
        level: Level for the package logger and its handlers.
        max_bytes: Size at which the log file is rotated.
        backup_count: Rotated files kept.
        console: Also log to stderr (added once).

    Returns:
        The log directory actually used.
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("foldernotes")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "foldernotes.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in package_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    _logging_configured = True
    package_logger.info(f"Logging to {log_file} ({backup_count} x {max_bytes} bytes)")
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


@dataclass
class OperationMetrics:
    """Counters for one operation name."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe per-operation counters with optional persistence.

    Args:
        metrics_file: JSON file the counters are saved to. Defaults to
            ``~/.foldernotes/metrics.json``.
        auto_save_interval: Save after this many recorded operations
            (0 disables automatic saving).
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
    ):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._since_save = 0
        self._load()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)
            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = error
                m.last_error_time = datetime.now(timezone.utc)

            self._since_save += 1
            if 0 < self._auto_save_interval <= self._since_save:
                self._save_unlocked()

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's counters."""
        with self._lock:
            return {op: self._describe(m) for op, m in self._metrics.items()}

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            total = sum(m.count for m in self._metrics.values())
            errors = sum(m.error_count for m in self._metrics.values())
            return {
                "uptime_seconds": round(
                    (datetime.now(timezone.utc) - self._start_time).total_seconds(), 1
                ),
                "total_operations": total,
                "total_errors": errors,
                "success_rate": (total - errors) / total if total else 1.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)
            self._since_save = 0

    def save_metrics(self) -> bool:
        """Write the counters to disk now; False if the write failed."""
        with self._lock:
            return self._save_unlocked()

    def _load(self) -> None:
        """Restore counters saved by an earlier process, if any."""
        if not self._metrics_file.is_file():
            return
        try:
            with open(self._metrics_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            for op, saved in data.get("operations", {}).items():
                m = self._metrics[op]
                m.count = saved.get("count", 0)
                m.success_count = saved.get("success_count", 0)
                m.error_count = saved.get("error_count", 0)
                m.total_duration_ms = saved.get("avg_duration_ms", 0) * m.count
                m.max_duration_ms = saved.get("max_duration_ms", 0.0)
                m.last_error = saved.get("last_error")
                if saved.get("last_error_time"):
                    m.last_error_time = datetime.fromisoformat(saved["last_error_time"])
        except (OSError, json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load metrics from {self._metrics_file}: {e}")
            self._metrics.clear()

    @staticmethod
    def _describe(m: OperationMetrics) -> Dict[str, Any]:
        return {
            "count": m.count,
            "success_count": m.success_count,
            "error_count": m.error_count,
            "avg_duration_ms": round(m.total_duration_ms / m.count, 2) if m.count else 0,
            "max_duration_ms": round(m.max_duration_ms, 2),
            "last_error": m.last_error,
            "last_error_time": m.last_error_time.isoformat() if m.last_error_time else None,
        }

    def _save_unlocked(self) -> bool:
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {op: self._describe(m) for op, m in self._metrics.items()},
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_file, self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        self._since_save = 0
        return True


# Process-wide collector used by timed_operation
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block, log START/END with a correlation id, record metrics.

    Yields a dict the block can add result details to; they are appended
    to the END log line.

    Example:
        with timed_operation("save_note", note_id=note_id) as op:
            path = write()
            op["path"] = path
    """
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {"correlation_id": correlation_id}
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    start = time.perf_counter()
    error_msg = None
    try:
        yield info
    except Exception as e:
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_operation(operation, duration_ms, error_msg is None, error_msg)
        result_str = ", ".join(
            f"{k}={v}" for k, v in info.items() if k != "correlation_id"
        )
        status = "OK" if error_msg is None else f"ERROR: {error_msg}"
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) "
            f"[{status}] {result_str}"
        )
