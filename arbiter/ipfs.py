"""Content-addressed fetch and publish."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar
import hashlib
import json
import logging
import time

import httpx

from arbiter.config import DEFAULT_GATEWAYS
from arbiter.errors import InfrastructureError

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "Arbiter-Node/1.0"


class _Permanent(Exception):
    """Failure that another attempt will not fix."""


class RetryPolicy:
    def __init__(
        self,
        retries: int = 5,
        retry_delay: float = 1.0,
        retry_backoff: float = 2.0,
        max_delay: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.retries = retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.max_delay = max_delay
        self.sleep = sleep

    def run(self, label: str, attempt_fn: Callable[[int], T]) -> T:
        max_attempts = self.retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(max_attempts):
            if attempt > 0:
                delay = min(self.retry_delay * (self.retry_backoff ** (attempt - 1)), self.max_delay)
                logger.info(f"{label} retry {attempt}/{max_attempts - 1} after {delay:.1f}s delay")
                self.sleep(delay)
            try:
                return attempt_fn(attempt)
            except _Permanent as exc:
                raise InfrastructureError(f"{label} failed: {exc}") from exc
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.warning(f"{label} attempt {attempt + 1} failed: {exc}")
        raise InfrastructureError(f"{label} failed after {max_attempts} attempts: {last_error}")


class IpfsClient:
    """Fetch content through a rotating list of public gateways."""

    def __init__(
        self,
        gateways: List[str] | None = None,
        timeout: float = 30.0,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.gateways = [g.rstrip("/") for g in (gateways or DEFAULT_GATEWAYS)]
        self.timeout = timeout
        self.policy = policy or RetryPolicy()

    @classmethod
    def from_config(cls, config) -> "IpfsClient":
        ipfs = config.ipfs
        return cls(
            gateways=config.ipfs_gateways,
            timeout=float(ipfs.get("timeout_seconds", 30)),
            policy=RetryPolicy(retries=int(ipfs.get("retries", 5))),
        )

    def fetch(self, cid: str) -> bytes:
        cid = cid.strip()

        def _attempt(attempt: int) -> bytes:
            gateway = self.gateways[attempt % len(self.gateways)]
            url = f"{gateway}/ipfs/{cid}"
            logger.info("Fetching %s (attempt %d)", url, attempt + 1)
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                resp = client.get(url, headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
            if not resp.content:
                raise ValueError("Empty response received")
            return resp.content

        return self.policy.run(f"IPFS fetch {cid}", _attempt)


def _as_bytes(payload: bytes | str | Path) -> bytes:
    if isinstance(payload, Path):
        if not payload.exists():
            raise InfrastructureError(f"File not found: {payload}")
        return payload.read_bytes()
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


class PinataPublisher:
    """Upload files through a pinning service's ``pinFileToIPFS`` endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.pinata.cloud",
        api_key: str | None = None,
        timeout: float = 30.0,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout
        self.policy = policy or RetryPolicy()

    def publish(self, payload: bytes | str | Path, filename: str = "justification.json") -> str:
        if not self.api_key:
            raise InfrastructureError("IPFS pinning key is not configured")
        data = _as_bytes(payload)
        url = f"{self.base_url}/pinning/pinFileToIPFS"

        def _attempt(attempt: int) -> str:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    url,
                    files={"file": (filename, data, "application/json")},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            if resp.status_code in (400, 401, 403):
                raise _Permanent(f"HTTP {resp.status_code}: {resp.text[:300]}")
            resp.raise_for_status()
            cid = resp.json().get("IpfsHash")
            if not cid:
                raise ValueError("No IpfsHash in pinning response")
            return cid

        cid = self.policy.run("IPFS upload", _attempt)
        logger.info("Published %s as %s", filename, cid)
        return cid


class LocalPublisher:
    """Write content under its SHA-256 digest; for single-node and offline use."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def publish(self, payload: bytes | str | Path, filename: str = "justification.json") -> str:
        data = _as_bytes(payload)
        digest = hashlib.sha256(data).hexdigest()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            (self.root / digest).write_bytes(data)
        except OSError as exc:
            raise InfrastructureError(f"Failed to write {filename}: {exc}") from exc
        logger.info("Stored %s locally as %s", filename, digest)
        return digest

    def read(self, cid: str) -> bytes:
        return (self.root / cid).read_bytes()


def publish_record(publisher, record: Dict[str, Any]) -> str:
    return publisher.publish(json.dumps(record, indent=2).encode("utf-8"), filename="justification.json")


def build_publisher(config):
    if config.publisher == "local":
        return LocalPublisher(config.data_dir / "published")
    ipfs = config.ipfs
    return PinataPublisher(
        base_url=ipfs.get("pinning_service", "https://api.pinata.cloud"),
        api_key=ipfs.get("pinning_key"),
        timeout=float(ipfs.get("timeout_seconds", 30)),
        policy=RetryPolicy(retries=int(ipfs.get("retries", 5))),
    )
