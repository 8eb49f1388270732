import sqlite3
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Tuple
from pathlib import Path

from .errors import StorageError
from .models import (
    AppSettings,
    ExportResult,
    HistoryFilter,
    HistoryPage,
    SpeedTestResult,
    TimeRange,
    utc_now,
)

logger = logging.getLogger(__name__)

CSV_HEADER = "task_id,endpoint,download_mbps,upload_mbps,latency_ms,jitter_ms,loss_pct,started_at,duration_ms"

MAX_PAGE_SIZE = 200

_COLUMNS = "task_id, endpoint, download_mbps, upload_mbps, latency_ms, jitter_ms, loss_pct, started_at, duration_ms"


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the canonical stored form.

    Fixed-width UTC with millisecond precision, so comparing the text
    compares the instants.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _fmt_optional(value: Optional[float]) -> str:
    return "" if value is None else f"{value:.4f}"


def _where(from_: Optional[datetime], to: Optional[datetime]) -> Tuple[str, List[str]]:
    parts: List[str] = []
    binds: List[str] = []
    if from_ is not None:
        parts.append("started_at >= ?")
        binds.append(format_timestamp(from_))
    if to is not None:
        parts.append("started_at <= ?")
        binds.append(format_timestamp(to))
    if not parts:
        return "", binds
    return "WHERE " + " AND ".join(parts), binds


class HistoryStore:
    """Manages the SQLite database holding settings and speed-test history."""

    def __init__(self, db_path: str = "data/pulsecore.db", busy_timeout: float = 5.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """One connection and one transaction per operation, under the lock."""
        with self._lock:
            try:
                conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
            except sqlite3.Error as e:
                raise StorageError(f"cannot open database {self.db_path}: {e}") from e
            try:
                with conn:
                    yield conn
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
            finally:
                conn.close()

    def _init_db(self):
        """Initialize database tables."""
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"failed to create data dir for {self.db_path}: {e}") from e

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    json TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS speed_tests (
                    task_id TEXT PRIMARY KEY,
                    endpoint TEXT NOT NULL,
                    download_mbps REAL NOT NULL,
                    upload_mbps REAL,
                    latency_ms REAL,
                    jitter_ms REAL,
                    loss_pct REAL,
                    started_at TEXT NOT NULL,
                    duration_ms INTEGER NOT NULL
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_speed_tests_started_at ON speed_tests (started_at)"
            )

        logger.info(f"Database initialized at {self.db_path}")

    def load_settings(self) -> Optional[AppSettings]:
        """Load the settings record, or None if it was never saved."""
        with self._connection() as conn:
            row = conn.execute("SELECT json FROM settings WHERE id = 1").fetchone()

        if row is None:
            return None
        try:
            raw = json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode stored settings: {e}")
            return None
        if not isinstance(raw, dict):
            logger.error(f"Stored settings are not an object: {type(raw).__name__}")
            return None
        return AppSettings.from_dict(raw)

    def save_settings(self, settings: AppSettings):
        """Overwrite the settings record in full."""
        raw = json.dumps(settings.to_dict())
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO settings (id, json) VALUES (1, ?) "
                "ON CONFLICT(id) DO UPDATE SET json = excluded.json",
                (raw,),
            )

    def insert(self, result: SpeedTestResult):
        """Insert a speed-test result, replacing any record with the same task id."""
        with self._connection() as conn:
            conn.execute(f"""
                INSERT OR REPLACE INTO speed_tests ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                result.task_id,
                result.endpoint,
                float(result.download_mbps),
                result.upload_mbps,
                result.latency_ms,
                result.jitter_ms,
                result.loss_pct,
                format_timestamp(result.started_at),
                int(result.duration_ms),
            ))
        logger.debug(f"Stored speed test {result.task_id}")

    def query(self, history_filter: HistoryFilter) -> HistoryPage:
        """Return one page of history, most recent first.

        The count and the page are read in the same transaction with the
        same predicate, so ``total`` always agrees with ``items``.
        """
        page = max(1, int(history_filter.page))
        page_size = max(1, min(MAX_PAGE_SIZE, int(history_filter.page_size)))
        offset = (page - 1) * page_size
        where_sql, binds = _where(history_filter.from_, history_filter.to)

        with self._connection() as conn:
            conn.execute("BEGIN")
            total = conn.execute(
                f"SELECT COUNT(1) FROM speed_tests {where_sql}", binds
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM speed_tests {where_sql} "
                "ORDER BY started_at DESC LIMIT ? OFFSET ?",
                [*binds, page_size, offset],
            ).fetchall()

        return HistoryPage(total=int(total), items=[self._row_to_result(r) for r in rows])

    def export_csv(self, path: str, time_range: Optional[TimeRange] = None) -> ExportResult:
        """Write every record in the range to a CSV file, overwriting it."""
        time_range = time_range or TimeRange()
        export_path = Path(path)
        where_sql, binds = _where(time_range.from_, time_range.to)

        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM speed_tests {where_sql} ORDER BY started_at DESC",
                binds,
            ).fetchall()

        lines = [CSV_HEADER]
        for row in rows:
            item = self._row_to_result(row)
            lines.append(",".join([
                item.task_id,
                item.endpoint,
                f"{item.download_mbps:.4f}",
                _fmt_optional(item.upload_mbps),
                _fmt_optional(item.latency_ms),
                _fmt_optional(item.jitter_ms),
                _fmt_optional(item.loss_pct),
                item.started_at.isoformat(),
                str(item.duration_ms),
            ]))

        try:
            export_path.parent.mkdir(parents=True, exist_ok=True)
            export_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as e:
            raise StorageError(f"failed to write export {export_path}: {e}") from e

        logger.info(f"Exported {len(rows)} history rows to {export_path}")
        return ExportResult(path=str(export_path), rows=len(rows))

    def prune(self, keep_days: int) -> int:
        """Delete records that started more than ``keep_days`` days ago."""
        cutoff = format_timestamp(utc_now() - timedelta(days=max(int(keep_days), 1)))
        with self._connection() as conn:
            deleted = conn.execute(
                "DELETE FROM speed_tests WHERE started_at < ?", (cutoff,)
            ).rowcount
        if deleted:
            logger.info(f"Pruned {deleted} history records older than {cutoff}")
        return deleted

    @staticmethod
    def _row_to_result(row: tuple) -> SpeedTestResult:
        task_id, endpoint, download, upload, latency, jitter, loss, started_raw, duration = row
        try:
            started_at = parse_timestamp(started_raw)
        except (TypeError, ValueError):
            # Keep the page readable; the row sorts and filters by its stored text.
            logger.warning(f"Malformed started_at {started_raw!r} for task {task_id}, using current time")
            started_at = utc_now()

        return SpeedTestResult(
            task_id=task_id,
            endpoint=endpoint,
            download_mbps=download,
            upload_mbps=upload,
            latency_ms=latency,
            jitter_ms=jitter,
            loss_pct=loss,
            started_at=started_at,
            duration_ms=int(duration),
        )
