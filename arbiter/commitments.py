"""Commit/reveal handling for arbitration results."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple
import hashlib
import json
import logging
import os
import secrets
import string
import threading
try:
    import fcntl  # type: ignore
except Exception:  # pragma: no cover - non-POSIX environments
    fcntl = None

from arbiter.errors import CommitmentNotFoundError, InfrastructureError
from arbiter.ipfs import publish_record
from arbiter.query import ArbitrationResult

logger = logging.getLogger(__name__)

TOKEN_HEX_LENGTH = 32
SALT_BYTES = 16
MAX_SALT_ATTEMPTS = 8
DEFAULT_MAX_AGE_SECONDS = 72 * 3600


class Mode(str, Enum):
    STANDARD = "0"
    COMMIT = "1"
    REVEAL = "2"


def parse_mode(value: str) -> Tuple[Mode, str]:
    """Split a ``<mode>:`` prefix off an identifier string; no prefix means standard."""
    if len(value) >= 2 and value[1] == ":" and value[0] in {m.value for m in Mode}:
        return Mode(value[0]), value[2:]
    return Mode.STANDARD, value


def normalize_token(token: str) -> str:
    """Decimal, ``0x`` hex, or bare hex to 32 lowercase hex digits."""
    raw = token.strip()
    if raw.isdigit():
        digits = format(int(raw), "x")
    elif raw.lower().startswith("0x"):
        digits = raw[2:]
    else:
        digits = raw
    digits = digits.lower().rjust(TOKEN_HEX_LENGTH, "0")
    if len(digits) != TOKEN_HEX_LENGTH or any(c not in string.hexdigits for c in digits):
        raise CommitmentNotFoundError(token)
    return digits


def _uint256(value: int) -> bytes:
    return int(value).to_bytes(32, "big")


def encode_commitment(scores: Sequence[int], salt: int) -> bytes:
    """ABI encoding of ``(uint256[] scores, uint256 salt)``."""
    head = _uint256(0x40) + _uint256(salt)
    tail = _uint256(len(scores)) + b"".join(_uint256(score) for score in scores)
    return head + tail


def commitment_hash(scores: Sequence[int], salt: int) -> str:
    """First 128 bits of the SHA-256 of the encoded scores and salt, as hex."""
    return hashlib.sha256(encode_commitment(scores, salt)).hexdigest()[:TOKEN_HEX_LENGTH]


def _created_at(record: Dict[str, Any]) -> Optional[datetime]:
    try:
        created = datetime.fromisoformat(str(record.get("created")))
    except ValueError:
        return None
    return created if created.tzinfo else created.replace(tzinfo=timezone.utc)


def _stale_keys(records: Dict[str, Dict[str, Any]], max_age_seconds: float) -> list[str]:
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
    stale = []
    for key, record in records.items():
        created = _created_at(record)
        if created is not None and created < cutoff:
            stale.append(key)
    return stale


class MemoryCommitmentStore:
    """In-process store for single-instance deployments and tests."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = record

    def get(self, key: str) -> Dict[str, Any] | None:
        with self._lock:
            return self._records.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def take(self, key: str) -> Dict[str, Any] | None:
        with self._lock:
            return self._records.pop(key, None)

    def purge_stale(self, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS) -> int:
        with self._lock:
            stale = _stale_keys(self._records, max_age_seconds)
            for key in stale:
                del self._records[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)


class JsonCommitmentStore:
    """JSON-file store; every read-modify-write holds an exclusive file lock."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        data = self.path.read_text(encoding="utf-8")
        if not data.strip():
            return {}
        return json.loads(data)

    def _write(self, records: Dict[str, Dict[str, Any]]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(records, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def _locked_update(self, updater):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, self._lock_path().open("a+", encoding="utf-8") as handle:
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    records = self._load()
                    result, changed = updater(records)
                    if changed:
                        self._write(records)
                    return result
                finally:
                    if fcntl is not None:
                        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except (OSError, json.JSONDecodeError) as exc:
            raise InfrastructureError(f"Commitment store error: {exc}") from exc

    def save(self, key: str, record: Dict[str, Any]) -> None:
        def _update(records):
            records[key] = record
            return None, True
        self._locked_update(_update)

    def get(self, key: str) -> Dict[str, Any] | None:
        return self._locked_update(lambda records: (records.get(key), False))

    def delete(self, key: str) -> None:
        def _update(records):
            return None, records.pop(key, None) is not None
        self._locked_update(_update)

    def take(self, key: str) -> Dict[str, Any] | None:
        def _update(records):
            record = records.pop(key, None)
            return record, record is not None
        return self._locked_update(_update)

    def purge_stale(self, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS) -> int:
        def _update(records):
            stale = _stale_keys(records, max_age_seconds)
            for key in stale:
                del records[key]
            return len(stale), bool(stale)
        return self._locked_update(_update)


def build_store(config):
    if config.commit_backend == "memory":
        return MemoryCommitmentStore()
    return JsonCommitmentStore(config.commit_store_path)


class CommitmentManager:
    def __init__(self, store, publisher, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS) -> None:
        self.store = store
        self.publisher = publisher
        self.max_age_seconds = max_age_seconds
        self.last_purge: threading.Thread | None = None

    def publish(self, result: ArbitrationResult) -> str:
        """Publish the justification record now and return its content id."""
        return publish_record(self.publisher, result.to_record())

    def commit(self, result: ArbitrationResult) -> str:
        """Store ``result`` behind a salted hash; returns the hash in decimal."""
        scores = result.vector or [0]
        for _ in range(MAX_SALT_ATTEMPTS):
            salt = secrets.token_bytes(SALT_BYTES)
            key = commitment_hash(scores, int.from_bytes(salt, "big"))
            if self.store.get(key) is None:
                break
        else:
            raise InfrastructureError("Could not allocate a unique commitment hash")
        self.store.save(key, {
            "result": result.to_dict(),
            "salt": salt.hex(),
            "created": datetime.now(timezone.utc).isoformat(),
        })
        logger.info("Committed result under %s", key)
        return str(int(key, 16))

    def reveal(self, token: str) -> Tuple[ArbitrationResult, str]:
        """Publish a committed result and consume its commitment.

        Returns the result and ``<cid>:<salt>``. A failed publish puts the
        record back so the commitment can be revealed again.
        """
        key = normalize_token(token)
        record = self.store.take(key)
        if record is None:
            raise CommitmentNotFoundError(key)
        result = ArbitrationResult.from_dict(record.get("result") or {})
        try:
            cid = self.publish(result)
        except Exception:
            logger.error("Publishing revealed result %s failed; restoring commitment", key)
            self.store.save(key, record)
            raise
        logger.info("Revealed %s as %s", key, cid)
        self.schedule_purge()
        return result, f"{cid}:{record.get('salt', '')}"

    def purge(self) -> int:
        removed = self.store.purge_stale(self.max_age_seconds)
        if removed:
            logger.info("Purged %d stale commitment(s)", removed)
        return removed

    def schedule_purge(self) -> threading.Thread:
        def _run() -> None:
            try:
                self.purge()
            except InfrastructureError as exc:
                logger.error("purge_stale failed: %s", exc.message)

        thread = threading.Thread(target=_run, name="commitment-purge", daemon=True)
        thread.start()
        self.last_purge = thread
        return thread
