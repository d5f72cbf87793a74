"""Fetch, unpack, and validate evidence bundle archives."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Sequence
import io
import json
import logging
import shutil
import zipfile

from arbiter.errors import InfrastructureError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


class ArchiveService:
    def __init__(self, fetcher: Callable[[str], bytes]) -> None:
        self.fetcher = fetcher

    def fetch(self, cid: str) -> bytes:
        logger.info("Fetching archive %s", cid)
        data = self.fetcher(cid)
        logger.info("Fetched archive %s (%d bytes)", cid, len(data))
        return data

    def unpack(self, data: bytes, dest: Path, name: str = "archive") -> Path:
        """Extract a zip archive under ``dest/name``, refusing entries that escape it."""
        target = Path(dest) / name
        target.mkdir(parents=True, exist_ok=True)
        root = target.resolve()
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                for member in archive.infolist():
                    resolved = (root / member.filename).resolve()
                    if not resolved.is_relative_to(root):
                        raise InfrastructureError(f"Archive entry escapes extraction directory: {member.filename}")
                archive.extractall(root)
        except zipfile.BadZipFile as exc:
            raise InfrastructureError(f"Failed to extract archive: {exc}") from exc
        return self._bundle_root(target)

    @staticmethod
    def _bundle_root(target: Path) -> Path:
        # Archives zipped from a folder carry a single top-level directory.
        if (target / MANIFEST_NAME).exists():
            return target
        children = [child for child in target.iterdir() if not child.name.startswith("__MACOSX")]
        if len(children) == 1 and children[0].is_dir() and (children[0] / MANIFEST_NAME).exists():
            return children[0]
        return target

    def validate(self, path: Path) -> bool:
        manifest = Path(path) / MANIFEST_NAME
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise InfrastructureError(f"Manifest validation failed: {exc}") from exc
        if not isinstance(data, dict) or not data.get("version"):
            raise InfrastructureError("Manifest validation failed: missing version")
        return True

    def fetch_all(self, cids: Sequence[str], dest: Path) -> Dict[str, Path]:
        """Fetch, unpack, and validate each bundle; keyed by identifier."""
        paths: Dict[str, Path] = {}
        for index, cid in enumerate(cids):
            data = self.fetch(cid)
            path = self.unpack(data, Path(dest) / f"archive_{index}_{cid[:10]}")
            self.validate(path)
            paths[cid] = path
        return paths

    def cleanup(self, path: Path | None) -> None:
        if path is None:
            return
        logger.info("Cleaning up directory: %s", path)
        shutil.rmtree(path, ignore_errors=True)
