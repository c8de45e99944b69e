"""
Audit ledger binding.

Anchors tags at issuance, appends audit verdicts and download decisions,
and answers history queries. Every anchored record is also linked into a
global hash chain so that later edits to the store are detectable.

Key layout (values are canonical JSON):

    TAG_<fileId>_<blockIndex:012d>     tag record
    AUDITSEQ_<fileId>                  last audit sequence number for the file
    AUDIT_<fileId>_<seq:012d>          audit record
    DLSEQ_<fileId>                     last download sequence number for the file
    DL_<fileId>_<seq:012d>             download record
    CHAINHEAD                          {seq, entryHash} of the newest chain entry
    CHAIN_<seq:012d>                   chain entry

Prefix scans are followed by a ``fileId`` filter, because the prefix for
file ``F1`` also covers keys of a file named ``F1_x``.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from .errors import DuplicateTag, LedgerUnavailable, NoAuditableBlocks
from .hashing import canonicalize, chain_entry_hash, sha256_hex
from .ledger import LedgerStore, LedgerTransaction
from .logging_config import audit_log
from .params import parse_hex_int, to_hex
from .signing import RecordSigner, TrustStore, verify_record_signature
from .tags import Tag

TAG_PREFIX = "TAG_"
AUDIT_PREFIX = "AUDIT_"
AUDIT_SEQ_PREFIX = "AUDITSEQ_"
DOWNLOAD_PREFIX = "DL_"
DOWNLOAD_SEQ_PREFIX = "DLSEQ_"
CHAIN_PREFIX = "CHAIN_"
CHAIN_HEAD = "CHAINHEAD"


def tag_key(file_id: str, block_index: int) -> str:
    return f"{TAG_PREFIX}{file_id}_{block_index:012d}"


def audit_key(file_id: str, seq: int) -> str:
    return f"{AUDIT_PREFIX}{file_id}_{seq:012d}"


def download_key(file_id: str, seq: int) -> str:
    return f"{DOWNLOAD_PREFIX}{file_id}_{seq:012d}"


def chain_key(seq: int) -> str:
    return f"{CHAIN_PREFIX}{seq:012d}"


def utc_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    MALICIOUS = "MALICIOUS"


class FileState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    TAGGED = "TAGGED"
    AUDITED_VALID = "AUDITED_VALID"
    AUDITED_INVALID = "AUDITED_INVALID"


@dataclass
class TagRecord:
    id: str
    file_id: str
    block_index: int
    tag_value: str
    created_at: str
    uid: Optional[str] = None
    signature: Optional[Dict[str, Any]] = None

    @property
    def value(self) -> int:
        return parse_hex_int(self.tag_value, "tagValue")

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "uid": self.uid,
            "fileId": self.file_id,
            "blockIndex": self.block_index,
            "tagValue": self.tag_value,
            "createdAt": self.created_at,
        }
        if self.signature:
            d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TagRecord":
        return cls(
            id=d["id"],
            uid=d.get("uid"),
            file_id=d["fileId"],
            block_index=int(d["blockIndex"]),
            tag_value=d["tagValue"],
            created_at=d["createdAt"],
            signature=d.get("signature"),
        )


@dataclass
class AuditRecord:
    id: str
    file_id: str
    proof_hash: str
    mu: str
    status: AuditStatus
    timestamp: str
    seq: int
    challenge_ref: Optional[str] = None
    sample_size: int = 0
    reason: Optional[str] = None
    uid: Optional[str] = None
    signature: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "fileId": self.file_id,
            "uid": self.uid,
            "proofHash": self.proof_hash,
            "mu": self.mu,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "seq": self.seq,
            "challengeRef": self.challenge_ref,
            "sampleSize": self.sample_size,
            "reason": self.reason,
        }
        if self.signature:
            d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AuditRecord":
        return cls(
            id=d["id"],
            file_id=d["fileId"],
            uid=d.get("uid"),
            proof_hash=d["proofHash"],
            mu=d["mu"],
            status=AuditStatus(d["status"]),
            timestamp=d["timestamp"],
            seq=int(d["seq"]),
            challenge_ref=d.get("challengeRef"),
            sample_size=int(d.get("sampleSize") or 0),
            reason=d.get("reason"),
            signature=d.get("signature"),
        )


@dataclass
class DownloadRecord:
    id: str
    file_id: str
    user_id: str
    allowed: bool
    request_hash: str
    timestamp: str
    seq: int
    uid: Optional[str] = None
    signature: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "fileId": self.file_id,
            "uid": self.uid,
            "userId": self.user_id,
            "allowed": self.allowed,
            "requestHash": self.request_hash,
            "timestamp": self.timestamp,
            "seq": self.seq,
        }
        if self.signature:
            d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DownloadRecord":
        return cls(
            id=d["id"],
            file_id=d["fileId"],
            uid=d.get("uid"),
            user_id=d["userId"],
            allowed=bool(d["allowed"]),
            request_hash=d["requestHash"],
            timestamp=d["timestamp"],
            seq=int(d["seq"]),
            signature=d.get("signature"),
        )


@dataclass
class ChainVerification:
    valid: bool
    entries: int
    broken_at: Optional[int] = None
    problems: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "entries": self.entries,
            "brokenAt": self.broken_at,
            "problems": self.problems,
        }


class AuditLedgerBinding:
    """
    The single serialisation point for anchored protocol state.

    Each public method runs in exactly one ledger transaction: either every
    record it writes is committed, or none is. No in-process lock is held
    around ledger calls.
    """

    def __init__(
        self,
        store: LedgerStore,
        signer: Optional[RecordSigner] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.signer = signer
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> str:
        return utc_iso(self._clock())

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[LedgerTransaction]:
        try:
            with self.store.transaction() as txn:
                yield txn
        except LedgerUnavailable as e:
            audit_log.ledger_unavailable(operation, str(e))
            raise

    def _append(self, txn: LedgerTransaction, kind: str, key: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Write a new record and link it into the hash chain."""
        if self.signer is not None:
            record = self.signer.sign_record(record)
        txn.put_json(key, record)

        head = txn.get_json(CHAIN_HEAD) or {"seq": 0, "entryHash": None}
        seq = int(head["seq"]) + 1
        payload_hash = sha256_hex(canonicalize(record))
        entry_hash = chain_entry_hash(head["entryHash"], payload_hash)
        txn.put_json(chain_key(seq), {
            "seq": seq,
            "kind": kind,
            "key": key,
            "payloadHash": payload_hash,
            "prevEntryHash": head["entryHash"],
            "entryHash": entry_hash,
        })
        txn.put_json(CHAIN_HEAD, {"seq": seq, "entryHash": entry_hash})
        return record

    @staticmethod
    def _next_seq(txn: LedgerTransaction, counter_key: str) -> int:
        seq = int(txn.get_json(counter_key) or 0) + 1
        txn.put_json(counter_key, seq)
        return seq

    @staticmethod
    def _scan_file(txn: LedgerTransaction, prefix: str, file_id: str) -> List[Dict[str, Any]]:
        return [rec for _, rec in txn.scan_prefix(f"{prefix}{file_id}_") if rec.get("fileId") == file_id]

    # ============================================================
    # Tags
    # ============================================================

    def anchor_tags(self, file_id: str, tags: Iterable[Tag], uid: Optional[str] = None) -> List[TagRecord]:
        """
        Anchor tags for one file in a single transaction.

        Re-anchoring a bit-identical tag is a no-op. A different value for
        an already-tagged block raises ``DuplicateTag`` and nothing from this
        call is committed.
        """
        tags = list(tags)
        for tag in tags:
            if tag.file_id != file_id:
                raise ValueError(f"tag for file {tag.file_id!r} passed to anchor_tags({file_id!r})")

        records: List[TagRecord] = []
        skipped = 0
        with self._transaction("anchor_tags") as txn:
            created_at = self._now()
            for tag in tags:
                key = tag_key(file_id, tag.block_index)
                value_hex = to_hex(tag.tag_value)
                existing = txn.get_json(key)
                if existing is not None:
                    if existing["tagValue"] != value_hex:
                        raise DuplicateTag(file_id, tag.block_index)
                    records.append(TagRecord.from_dict(existing))
                    skipped += 1
                    continue
                rec = TagRecord(
                    id=key,
                    uid=uid,
                    file_id=file_id,
                    block_index=tag.block_index,
                    tag_value=value_hex,
                    created_at=created_at,
                )
                stored = self._append(txn, "TAG", key, rec.to_dict())
                records.append(TagRecord.from_dict(stored))

        audit_log.tags_anchored(file_id, len(records) - skipped, skipped)
        return records

    def get_tags_for_file(self, file_id: str) -> List[TagRecord]:
        """All anchored tags for a file, in block order, from one snapshot."""
        with self._transaction("get_tags_for_file") as txn:
            rows = self._scan_file(txn, TAG_PREFIX, file_id)
        return sorted((TagRecord.from_dict(r) for r in rows), key=lambda r: r.block_index)

    def get_tag_values(self, file_id: str) -> Dict[int, int]:
        return {r.block_index: r.value for r in self.get_tags_for_file(file_id)}

    def get_tag_value(self, file_id: str, block_index: int) -> Optional[int]:
        """Anchored tag value for one block, or None."""
        with self._transaction("get_tag") as txn:
            rec = txn.get_json(tag_key(file_id, block_index))
        if rec is None or rec.get("fileId") != file_id:
            return None
        return parse_hex_int(rec["tagValue"], "tagValue")

    def auditable_indices(self, file_id: str) -> List[int]:
        return [r.block_index for r in self.get_tags_for_file(file_id)]

    # ============================================================
    # Audit records
    # ============================================================

    def record_audit(
        self,
        file_id: str,
        proof_hash: str,
        mu_hex: str,
        status: AuditStatus,
        challenge_ref: Optional[str] = None,
        sample_size: int = 0,
        reason: Optional[str] = None,
        uid: Optional[str] = None
    ) -> AuditRecord:
        """
        Append an audit record.

        The per-file sequence number is assigned inside the write transaction,
        so concurrent rounds for one file get distinct, ordered numbers.

        Raises:
            NoAuditableBlocks: if the file has no anchored tags
        """
        status = AuditStatus(status)
        with self._transaction("record_audit") as txn:
            if not self._scan_file(txn, TAG_PREFIX, file_id):
                raise NoAuditableBlocks(file_id)
            seq = self._next_seq(txn, f"{AUDIT_SEQ_PREFIX}{file_id}")
            key = audit_key(file_id, seq)
            rec = AuditRecord(
                id=key,
                file_id=file_id,
                uid=uid,
                proof_hash=proof_hash,
                mu=mu_hex,
                status=status,
                timestamp=self._now(),
                seq=seq,
                challenge_ref=challenge_ref,
                sample_size=sample_size,
                reason=reason,
            )
            stored = self._append(txn, "AUDIT", key, rec.to_dict())

        audit_log.audit_verdict(file_id, challenge_ref or "", status.value, seq, reason)
        return AuditRecord.from_dict(stored)

    def get_audit_history(self, file_id: str) -> List[AuditRecord]:
        with self._transaction("get_audit_history") as txn:
            rows = self._scan_file(txn, AUDIT_PREFIX, file_id)
        return sorted((AuditRecord.from_dict(r) for r in rows), key=lambda r: r.seq)

    def get_latest_audit_status(self, file_id: str) -> Optional[AuditRecord]:
        """The audit record with the highest sequence number, or None."""
        history = self.get_audit_history(file_id)
        if not history:
            return None
        return max(history, key=lambda r: r.seq)

    def file_state(self, file_id: str) -> FileState:
        with self._transaction("file_state") as txn:
            has_tags = bool(self._scan_file(txn, TAG_PREFIX, file_id))
            audits = [AuditRecord.from_dict(r) for r in self._scan_file(txn, AUDIT_PREFIX, file_id)]
        if not has_tags:
            return FileState.UNINITIALIZED
        if not audits:
            return FileState.TAGGED
        latest = max(audits, key=lambda r: r.seq)
        if latest.status is AuditStatus.SUCCESS:
            return FileState.AUDITED_VALID
        return FileState.AUDITED_INVALID

    # ============================================================
    # Download log
    # ============================================================

    def log_download(
        self,
        file_id: str,
        user_id: str,
        allowed: bool,
        request_hash: str,
        uid: Optional[str] = None
    ) -> DownloadRecord:
        with self._transaction("log_download") as txn:
            seq = self._next_seq(txn, f"{DOWNLOAD_SEQ_PREFIX}{file_id}")
            key = download_key(file_id, seq)
            rec = DownloadRecord(
                id=key,
                file_id=file_id,
                uid=uid,
                user_id=user_id,
                allowed=bool(allowed),
                request_hash=request_hash,
                timestamp=self._now(),
                seq=seq,
            )
            stored = self._append(txn, "DOWNLOAD", key, rec.to_dict())

        audit_log.download_logged(file_id, user_id, bool(allowed))
        return DownloadRecord.from_dict(stored)

    def get_download_history(self, file_id: str) -> List[DownloadRecord]:
        with self._transaction("get_download_history") as txn:
            rows = self._scan_file(txn, DOWNLOAD_PREFIX, file_id)
        return sorted((DownloadRecord.from_dict(r) for r in rows), key=lambda r: r.seq)

    # ============================================================
    # Hash chain
    # ============================================================

    def export_chain(self) -> List[Dict[str, Any]]:
        with self._transaction("export_chain") as txn:
            return [entry for _, entry in txn.scan_prefix(CHAIN_PREFIX)]

    def verify_chain(self, trust_store: Optional[TrustStore] = None) -> ChainVerification:
        """
        Recompute every chain link and payload hash.

        With a trust store, every anchored record must also carry a valid
        signature.
        """
        problems: List[str] = []
        broken_at: Optional[int] = None
        with self._transaction("verify_chain") as txn:
            entries = [entry for _, entry in txn.scan_prefix(CHAIN_PREFIX)]
            head = txn.get_json(CHAIN_HEAD)
            prev: Optional[str] = None
            for expected_seq, entry in enumerate(entries, start=1):
                seq = entry.get("seq")
                record = txn.get_json(entry.get("key", ""))
                if seq != expected_seq:
                    problems.append(f"sequence gap: expected {expected_seq}, found {seq}")
                elif entry.get("prevEntryHash") != prev:
                    problems.append(f"entry {seq}: previous hash does not link")
                elif entry.get("entryHash") != chain_entry_hash(prev, entry.get("payloadHash", "")):
                    problems.append(f"entry {seq}: entry hash mismatch")
                elif record is None:
                    problems.append(f"entry {seq}: record {entry.get('key')} is missing")
                elif sha256_hex(canonicalize(record)) != entry.get("payloadHash"):
                    problems.append(f"entry {seq}: record {entry.get('key')} was modified")
                elif trust_store is not None and not verify_record_signature(record, trust_store):
                    problems.append(f"entry {seq}: record {entry.get('key')} has no valid signature")
                if problems:
                    broken_at = expected_seq
                    break
                prev = entry.get("entryHash")

            if not problems and entries:
                if not head or head.get("seq") != len(entries) or head.get("entryHash") != prev:
                    problems.append("chain head does not match the last entry")
                    broken_at = len(entries)

        result = ChainVerification(valid=not problems, entries=len(entries), broken_at=broken_at, problems=problems)
        audit_log.chain_verified(result.valid, result.entries, broken_at, problems or None)
        return result
