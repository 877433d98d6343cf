"""Tests for the audit logger."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

from src.audit.logger import AuditLogger, validate_audit_chain
from src.models import AuditEvent, Severity


def _make_event(**kwargs: object) -> AuditEvent:
    defaults: dict[str, object] = {
        "action": "failed_login",
        "resource": "security_monitoring",
        "risk_level": Severity.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)  # type: ignore[arg-type]


def test_log_appends_json_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event(user_id="user-1", ip_address="10.0.0.1"))

    lines = log_file.read_text().strip().split("\n")
    assert len(lines) == 1
    parsed = json.loads(lines[0])
    assert parsed["action"] == "failed_login"
    assert parsed["risk_level"] == "high"
    assert parsed["user_id"] == "user-1"
    assert parsed["ip_address"] == "10.0.0.1"
    assert "T" in parsed["timestamp"]


def test_log_creates_parent_directory(tmp_path: Path) -> None:
    log_file = tmp_path / "subdir" / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())
    assert log_file.exists()


def test_entries_chain_by_previous_line_hash(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event(action="first"))
    logger.log(_make_event(action="second"))

    lines = log_file.read_text().strip().split("\n")
    assert json.loads(lines[0])["prev_hash"] is None
    assert json.loads(lines[1])["prev_hash"] == hashlib.sha256(lines[0].encode()).hexdigest()


def test_chain_resumes_from_existing_file(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event(action="first"))
    AuditLogger(log_path=str(log_file)).log(_make_event(action="second"))

    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 2


def test_validate_chain_detects_tampering(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    for i in range(5):
        logger.log(_make_event(action=f"event-{i}"))

    lines = log_file.read_text().strip().split("\n")
    lines[2] = lines[2].replace("event-2", "TAMPERED")
    log_file.write_text("\n".join(lines) + "\n")

    result = validate_audit_chain(log_file)
    assert not result.valid
    # Line 4 carries the hash of the original line 3
    assert result.broken_at_line == 4


def test_validate_empty_file(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    log_file.write_text("")
    assert validate_audit_chain(log_file).valid


def test_rotation_keeps_backup_count(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=50, backup_count=2)
    for i in range(20):
        logger.log(_make_event(action=f"event-{i}"))

    assert (tmp_path / "audit.jsonl.1").exists()
    assert (tmp_path / "audit.jsonl.2").exists()
    assert not (tmp_path / "audit.jsonl.3").exists()


def test_rotated_file_starts_fresh_chain(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=50, backup_count=3)
    for i in range(6):
        logger.log(_make_event(action=f"event-{i}"))

    assert validate_audit_chain(log_file).valid
    assert validate_audit_chain(tmp_path / "audit.jsonl.1").valid


def test_rotation_configurable_via_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AUDIT_LOG_MAX_BYTES", "500")
    monkeypatch.setenv("AUDIT_LOG_BACKUP_COUNT", "7")
    logger = AuditLogger.from_env(str(tmp_path / "audit.jsonl"))
    assert logger._max_bytes == 500
    assert logger._backup_count == 7


def test_tail_returns_latest_entries(tmp_path: Path) -> None:
    logger = AuditLogger(log_path=str(tmp_path / "audit.jsonl"))
    for i in range(5):
        logger.log(_make_event(action=f"event-{i}"))

    tail = logger.tail(limit=2)
    assert [e["action"] for e in tail] == ["event-3", "event-4"]
