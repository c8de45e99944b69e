"""
Logging configuration for the PDP audit service.

Structured JSON lines plus a typed audit-event logger. Events carry
identifiers, codes and hashes only: block contents, digests and μ values
are never passed to the logger.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

_EVENT_ATTR = "pdp_event"


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; audit events merge their fields in."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line: Dict[str, Any] = {
            "timestamp": created.strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.funcName:
            line["where"] = f"{record.module}.{record.funcName}:{record.lineno}"

        rid = request_id_var.get()
        if rid:
            line["request_id"] = rid

        line.update(getattr(record, _EVENT_ATTR, None) or {})

        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class AuditLogger:
    """
    Logger for protocol and ledger events.
    """

    def __init__(self, name: str = "pdpaudit.audit"):
        self._logger = logging.getLogger(name)

    def _event(self, level: int, event_type: str, message: str, **fields) -> None:
        fields["event_type"] = event_type
        fields.setdefault("request_id", request_id_var.get())
        self._logger.log(level, "%s: %s", event_type, message, extra={_EVENT_ATTR: fields})

    def tags_anchored(self, file_id: str, count: int, skipped: int = 0) -> None:
        self._event(logging.INFO, "TAGS_ANCHORED", f"Anchored {count} tags for {file_id}",
                    file_id=file_id, count=count, skipped=skipped)

    def challenge_issued(self, file_id: str, challenge_id: str, size: int) -> None:
        self._event(logging.INFO, "CHALLENGE_ISSUED", f"Challenge issued for {file_id}",
                    file_id=file_id, challenge_id=challenge_id, size=size)

    def challenge_evicted(self, file_id: str, challenge_id: str) -> None:
        self._event(logging.WARNING, "CHALLENGE_EVICTED", f"Unanswered challenge {challenge_id} dropped",
                    file_id=file_id, challenge_id=challenge_id)

    def proof_generated(self, file_id: str, challenge_id: str, proof_hash: str) -> None:
        self._event(logging.INFO, "PROOF_GENERATED", f"Proof received for challenge {challenge_id}",
                    file_id=file_id, challenge_id=challenge_id, proof_hash=proof_hash)

    def audit_verdict(
        self,
        file_id: str,
        challenge_id: str,
        status: str,
        seq: int,
        reason: Optional[str] = None
    ) -> None:
        level = logging.INFO if status == "SUCCESS" else logging.WARNING
        self._event(level, "AUDIT_VERDICT", f"Audit {status} for {file_id}",
                    file_id=file_id, challenge_id=challenge_id, status=status, seq=seq, reason=reason)

    def round_evidence_missing(self, file_id: str, challenge_id: str, error_code: str,
                               block_index: Optional[int] = None) -> None:
        self._event(logging.WARNING, "ROUND_EVIDENCE_MISSING",
                    f"Audit round for {file_id} could not complete: {error_code}",
                    file_id=file_id, challenge_id=challenge_id, error_code=error_code,
                    block_index=block_index)

    def ledger_unavailable(self, operation: str, error: str) -> None:
        self._event(logging.ERROR, "LEDGER_UNAVAILABLE", f"Ledger unavailable during {operation}",
                    operation=operation, error=error)

    def download_logged(self, file_id: str, user_id: str, allowed: bool) -> None:
        self._event(logging.INFO if allowed else logging.WARNING, "DOWNLOAD_LOGGED",
                    f"Download {'allowed' if allowed else 'denied'} for {user_id}",
                    file_id=file_id, user_id=user_id, allowed=allowed)

    def chain_verified(self, valid: bool, entries: int, broken_at: Optional[int] = None,
                       problems: Optional[List[str]] = None) -> None:
        message = "Ledger chain valid" if valid else f"Ledger chain broken at {broken_at}"
        self._event(logging.INFO if valid else logging.CRITICAL, "CHAIN_VERIFIED", message,
                    valid=valid, entries=entries, broken_at=broken_at, problems=problems)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Replace the root handlers with stdout (and optionally a file).

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of plain text
        log_file: Optional file path for log output
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    formatter = StructuredFormatter() if json_format else logging.Formatter(
        '%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request ID to the current context, generating one if needed."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
