"""
JSON-lines file audit store.

Each event is one JSON object per line in the active log file. The file
is rotated by size or by calendar period; rotated files are renamed to
``<path>.<timestamp>``, optionally gzip-compressed, and pruned down to
``backup_count``. Reads cover the active file and every rotated file.

Blocking file I/O runs in a worker thread via ``asyncio.to_thread``.
"""

import asyncio
import gzip
import json
import logging
import os
import shutil
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import IO, Any, Sequence

from fastaudit.audit.model import AuditEvent, AuditFilter, ensure_utc, format_timestamp_z
from fastaudit.stores.base import AuditStore, apply_filter, export_filter, matches_filter
from fastaudit.stores.export import ExportFormat, serialize_events

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB


# =============================================================================
# CONFIGURATION
# =============================================================================


class RotationPolicy(str, Enum):
    """When the active log file is rotated."""

    SIZE = "size"  # active file would exceed max_file_size
    DAILY = "daily"
    WEEKLY = "weekly"  # ISO week
    MONTHLY = "monthly"


@dataclass(slots=True)
class FileStoreConfig:
    """File store configuration."""

    file_path: Path
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    rotation_policy: RotationPolicy = RotationPolicy.SIZE
    compression: bool = False
    backup_count: int = 5
    name: str = "file"

    def __post_init__(self) -> None:
        self.file_path = Path(self.file_path)
        if not isinstance(self.rotation_policy, RotationPolicy):
            self.rotation_policy = RotationPolicy(str(self.rotation_policy).lower())
        if self.max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive, got {self.max_file_size}")
        if self.backup_count < 0:
            raise ValueError(f"backup_count must not be negative, got {self.backup_count}")


def _rotation_stamp(now: datetime) -> str:
    return format_timestamp_z(now).replace(":", "-").replace(".", "-")


def _period(moment: datetime, policy: RotationPolicy) -> date | tuple[int, int]:
    if policy is RotationPolicy.DAILY:
        return moment.date()
    if policy is RotationPolicy.WEEKLY:
        iso = moment.isocalendar()
        return (iso[0], iso[1])
    return (moment.year, moment.month)


# =============================================================================
# FILE STORE
# =============================================================================


class FileAuditStore(AuditStore):
    """
    Append-only JSON-lines audit store with rotation.

    Example:
        store = FileAuditStore(FileStoreConfig(
            file_path=Path("/var/log/app/audit.log"),
            rotation_policy=RotationPolicy.DAILY,
            compression=True,
        ))
        await store.initialize()
        await store.store([event])
    """

    def __init__(self, config: FileStoreConfig | str | Path):
        if not isinstance(config, FileStoreConfig):
            config = FileStoreConfig(file_path=Path(config))
        self.config = config
        self.name = config.name
        self.path = config.file_path
        self._current_size: int | None = None
        # Guards rotation, appends and rewrites so the rotation decision and
        # the write it governs happen as one step
        self._lock = threading.RLock()

    @property
    def current_size(self) -> int:
        """Tracked size of the active file in bytes."""
        if self._current_size is None:
            self._current_size = self.path.stat().st_size if self.path.exists() else 0
        return self._current_size

    async def initialize(self) -> None:
        await asyncio.to_thread(self._prepare)
        logger.debug(f"File audit store ready: {self.path} ({self.current_size} bytes)")

    def _prepare(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._current_size = self.path.stat().st_size if self.path.exists() else 0

    # =========================================================================
    # WRITING
    # =========================================================================

    async def store(self, events: Sequence[AuditEvent]) -> None:
        if not events:
            return
        await asyncio.to_thread(self._append, list(events))

    def _append(self, events: list[AuditEvent]) -> None:
        payload = "".join(
            json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n"
            for event in events
        ).encode("utf-8")

        with self._lock:
            if self._should_rotate(len(payload)):
                self._rotate()
            size = self.current_size
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "ab") as f:
                f.write(payload)
            self._current_size = size + len(payload)

    def _should_rotate(self, pending_bytes: int) -> bool:
        if not self.path.exists():
            return False

        policy = self.config.rotation_policy
        if policy is RotationPolicy.SIZE:
            size = self.current_size
            return size > 0 and size + pending_bytes > self.config.max_file_size

        modified = datetime.fromtimestamp(self.path.stat().st_mtime, tz=timezone.utc)
        now = datetime.now(timezone.utc)
        return _period(modified, policy) != _period(now, policy)

    def _rotate(self) -> None:
        """Rename the active file aside, compress it and prune old backups."""
        stamp = _rotation_stamp(datetime.now(timezone.utc))
        rotated = self.path.with_name(f"{self.path.name}.{stamp}")
        suffix = 1
        while rotated.exists() or rotated.with_name(rotated.name + ".gz").exists():
            rotated = self.path.with_name(f"{self.path.name}.{stamp}-{suffix}")
            suffix += 1

        try:
            self.path.rename(rotated)
        except OSError as e:
            logger.error(f"Failed to rotate audit log {self.path}: {e}")
            return

        self._current_size = 0
        logger.info(f"Rotated audit log {self.path} -> {rotated.name}")

        if self.config.compression:
            try:
                self._compress(rotated)
            except OSError as e:
                logger.error(f"Failed to compress rotated audit log {rotated}: {e}")

        try:
            self._cleanup_old_backups()
        except OSError as e:
            logger.error(f"Failed to clean up audit log backups for {self.path}: {e}")

    def _compress(self, rotated: Path) -> None:
        target = rotated.with_name(rotated.name + ".gz")
        with open(rotated, "rb") as src, gzip.open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        rotated.unlink()

    def _backup_files(self) -> list[Path]:
        directory = self.path.parent
        if not directory.exists():
            return []
        prefix = self.path.name + "."
        return [p for p in directory.iterdir() if p.is_file() and p.name.startswith(prefix)]

    def _cleanup_old_backups(self) -> int:
        """Keep only the newest ``backup_count`` rotated files. Returns count deleted."""
        backups = sorted(
            self._backup_files(),
            key=lambda p: (p.stat().st_mtime, p.name),
            reverse=True,
        )
        deleted = 0
        for stale in backups[self.config.backup_count :]:
            stale.unlink()
            deleted += 1
        if deleted:
            logger.debug(f"Removed {deleted} old audit log backup(s) for {self.path}")
        return deleted

    # =========================================================================
    # READING
    # =========================================================================

    def _log_files(self) -> list[Path]:
        files = [self.path] if self.path.exists() else []
        return files + sorted(self._backup_files())

    @staticmethod
    def _open(path: Path, mode: str) -> IO[Any]:
        if path.name.endswith(".gz"):
            return gzip.open(path, mode + "t", encoding="utf-8")
        return open(path, mode, encoding="utf-8")

    def _read_file(self, path: Path) -> list[AuditEvent]:
        events: list[AuditEvent] = []
        try:
            with self._open(path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                        if isinstance(data, dict):
                            events.append(AuditEvent.from_dict(data))
                    except (ValueError, TypeError):
                        # Malformed lines are skipped
                        continue
        except (OSError, EOFError) as e:
            logger.debug(f"Skipping unreadable audit log {path}: {e}")
        return events

    def _read_all(self) -> list[AuditEvent]:
        with self._lock:
            events: list[AuditEvent] = []
            for path in self._log_files():
                events.extend(self._read_file(path))
            return events

    async def query(self, filter: AuditFilter) -> list[AuditEvent]:
        events = await asyncio.to_thread(self._read_all)
        return apply_filter(events, filter)

    async def count(self, filter: AuditFilter) -> int:
        events = await asyncio.to_thread(self._read_all)
        return sum(1 for e in events if matches_filter(e, filter))

    async def export(self, filter: AuditFilter, format: ExportFormat | str) -> str:
        fmt = ExportFormat.parse(format)
        events = await asyncio.to_thread(self._read_all)
        return serialize_events(apply_filter(events, export_filter(filter)), fmt)

    # =========================================================================
    # RETENTION
    # =========================================================================

    async def purge(self, before: datetime) -> int:
        return await asyncio.to_thread(self._purge, ensure_utc(before))

    def _purge(self, cutoff: datetime) -> int:
        removed = 0
        with self._lock:
            for path in self._log_files():
                events = self._read_file(path)
                kept = [e for e in events if e.timestamp >= cutoff]
                if len(kept) == len(events):
                    continue
                removed += len(events) - len(kept)

                if not kept:
                    path.unlink()
                    if path == self.path:
                        self._current_size = 0
                    continue

                original = path.stat()
                with self._open(path, "w") as f:
                    for event in kept:
                        f.write(json.dumps(event.to_dict(), ensure_ascii=False, default=str))
                        f.write("\n")
                # Backup pruning orders by mtime
                os.utime(path, (original.st_atime, original.st_mtime))
                if path == self.path:
                    self._current_size = path.stat().st_size

        if removed:
            logger.info(f"Purged {removed} audit event(s) older than {cutoff.isoformat()} from {self.path}")
        return removed

    async def health_check(self) -> bool:
        directory = self.path.parent
        return await asyncio.to_thread(
            lambda: directory.is_dir() and os.access(directory, os.W_OK)
        )
