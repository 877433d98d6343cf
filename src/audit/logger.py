"""Durable audit trail for security events.

Events are appended as JSON Lines. Each line carries the SHA-256 of the
previous line (``prev_hash``) so that edits to earlier entries are
detectable with :func:`validate_audit_chain`. Files rotate by size.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from src.models import AuditEvent


class AuditSink(Protocol):
    """Anything that can durably record an :class:`AuditEvent`."""

    def log(self, event: AuditEvent) -> None: ...


@dataclass
class ChainValidationResult:
    valid: bool
    entries: int = 0
    broken_at_line: int | None = None


def _digest(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check that every entry's ``prev_hash`` matches the line before it."""
    text = log_path.read_text().strip()
    if not text:
        return ChainValidationResult(valid=True)

    lines = text.split("\n")
    expected: str | None = None
    for number, line in enumerate(lines, start=1):
        if json.loads(line).get("prev_hash") != expected:
            return ChainValidationResult(
                valid=False, entries=len(lines), broken_at_line=number,
            )
        expected = _digest(line)

    return ChainValidationResult(valid=True, entries=len(lines))


class AuditLogger:
    """Append-only JSONL audit sink with size rotation and a hash chain."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._last_line: str | None = self._read_last_line()

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760")),
            backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5")),
        )

    def _read_last_line(self) -> str | None:
        # Resume the chain from an existing file
        if not self.log_path.exists() or self.log_path.stat().st_size == 0:
            return None
        text = self.log_path.read_text().strip()
        return text.split("\n")[-1] if text else None

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _maybe_rotate(self) -> bool:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return False

        self._backup(self._backup_count).unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            if self._backup(index).exists():
                self._backup(index).rename(self._backup(index + 1))
        self.log_path.rename(self._backup(1))
        return True

    def log(self, event: AuditEvent) -> None:
        """Append ``event``. A rotated-in file starts a fresh chain."""
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        record = json.loads(event.model_dump_json())

        lock_path = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                if self._maybe_rotate():
                    self._last_line = None
                record["prev_hash"] = (
                    _digest(self._last_line) if self._last_line is not None else None
                )
                line = json.dumps(record, separators=(",", ":"))
                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

        self._last_line = line

    def tail(self, limit: int = 20) -> list[dict[str, object]]:
        """Return the last ``limit`` entries of the current file, oldest first."""
        if not self.log_path.exists():
            return []
        lines = [ln for ln in self.log_path.read_text().split("\n") if ln.strip()]
        return [json.loads(ln) for ln in lines[-limit:]]
