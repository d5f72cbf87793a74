"""Evidence bundle manifests and their combination into one query."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import json
import logging
import re

from arbiter.errors import InfrastructureError, ValidationError
from arbiter.query import Attachment, PanelEntry, QueryObject

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
DEFAULT_NODES = [{"AI_PROVIDER": "OpenAI", "AI_MODEL": "gpt-4", "NO_COUNTS": 1, "WEIGHT": 1.0}]
ADDENDUM_STRIP = re.compile(r"[<>{}]")
PRINTABLE = re.compile(rb"^[\x20-\x7e\n\r\t]*$")

Fetcher = Callable[[str], bytes]


def detect_media_type(data: bytes) -> str:
    """Sniff a media type from leading bytes."""
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:2] == b"\xff\xd8":
        return "image/jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    head = data[:5].lower()
    if head.startswith(b"<?xml") or head.startswith(b"<svg"):
        return "image/svg+xml"
    if PRINTABLE.match(data[:100]):
        return "text/plain"
    return "application/octet-stream"


def sanitize_addendum(value: str) -> str:
    return ADDENDUM_STRIP.sub("", value)


@dataclass(frozen=True)
class EvidenceFile:
    path: Path
    media_type: str
    name: Optional[str] = None
    description: Optional[str] = None

    def to_attachment(self) -> Attachment:
        return Attachment.from_bytes(self.path.read_bytes(), self.media_type, name=self.name)


@dataclass
class Manifest:
    root: Path
    version: str
    prompt: str
    models: List[PanelEntry]
    iterations: int = 1
    outcomes: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    name: Optional[str] = None
    addendum: Optional[str] = None
    bcids: Dict[str, str] = field(default_factory=dict)
    additional: List[EvidenceFile] = field(default_factory=list)
    support: List[EvidenceFile] = field(default_factory=list)

    def attachments(self) -> List[Attachment]:
        loaded: List[Attachment] = []
        for item in [*self.additional, *self.support]:
            try:
                loaded.append(item.to_attachment())
            except OSError:
                logger.warning("Failed to read attachment %s", item.path, exc_info=True)
        return loaded


@dataclass(frozen=True)
class SecondaryManifest:
    cid: str
    expected_name: str
    manifest: Manifest


def _inside(root: Path, relative: str) -> Path:
    target = (root / relative).resolve()
    if not target.is_relative_to(root.resolve()):
        raise ValidationError(f"Manifest path escapes bundle: {relative}")
    return target


def _cid_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("cid")
    return str(value) if value else None


class ManifestParser:
    """Reads ``manifest.json`` bundles; hash references are fetched with ``fetcher``."""

    def __init__(self, fetcher: Optional[Fetcher] = None) -> None:
        self.fetcher = fetcher

    def _fetch(self, cid: str) -> bytes:
        if self.fetcher is None:
            raise InfrastructureError(f"No content fetcher configured for {cid}")
        return self.fetcher(cid)

    def _read_manifest(self, root: Path) -> Dict[str, Any]:
        path = root / MANIFEST_NAME
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise InfrastructureError(f"Failed to read manifest file: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in manifest file: {exc}") from exc
        if not isinstance(data, dict) or not data.get("version") or not data.get("primary"):
            raise ValidationError('Invalid manifest: missing required fields "version" or "primary"')
        return data

    def _read_primary(self, root: Path, primary: Dict[str, Any]) -> str:
        filename = primary.get("filename") if isinstance(primary, dict) else None
        cid = _cid_of(primary.get("hash")) if isinstance(primary, dict) else None
        if bool(filename) == bool(cid):
            raise ValidationError('Invalid manifest: primary must have either "filename" or "hash", but not both')
        if filename:
            try:
                return _inside(root, filename).read_text(encoding="utf-8")
            except OSError as exc:
                raise InfrastructureError(f"Failed to read primary file: {exc}") from exc
        try:
            content = self._fetch(cid)
        except InfrastructureError as exc:
            raise InfrastructureError(f"Failed to fetch primary file: {exc.message}") from exc
        (root / f"primary_{cid}").write_bytes(content)
        return content.decode("utf-8")

    def _primary_content(self, text: str, outcome_count: int) -> Tuple[str, List[str], List[str]]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in primary file: {exc}") from exc
        if not isinstance(data, dict) or not data.get("query"):
            raise ValidationError("No QUERY found in primary file")
        outcomes = [str(item) for item in data.get("outcomes") or []]
        if not outcomes:
            outcomes = [f"outcome{i + 1}" for i in range(outcome_count)]
        references = [str(item) for item in data.get("references") or []]
        return str(data["query"]), references, outcomes

    def _additional(self, root: Path, entries: Sequence[Dict[str, Any]]) -> List[EvidenceFile]:
        files: List[EvidenceFile] = []
        for entry in entries:
            name = entry.get("name")
            description = entry.get("description")
            cid = _cid_of(entry.get("hash"))
            if cid and entry.get("type") == "ipfs/cid":
                try:
                    content = self._fetch(cid)
                except InfrastructureError:
                    logger.warning("Failed to fetch additional file %s", cid, exc_info=True)
                    continue
                path = root / f"additional_{cid}"
                path.write_bytes(content)
                files.append(EvidenceFile(path, detect_media_type(content), name, description))
            elif entry.get("filename"):
                kind = entry.get("type")
                media_type = "text/plain" if kind == "UTF8" else (kind or "application/octet-stream")
                files.append(EvidenceFile(_inside(root, entry["filename"]), media_type, name, description))
        return files

    def _support(self, root: Path, entries: Sequence[Dict[str, Any]]) -> List[EvidenceFile]:
        files: List[EvidenceFile] = []
        for entry in entries:
            cid = _cid_of(entry.get("hash"))
            if not cid:
                logger.warning("Support file entry missing hash: %s", entry)
                continue
            try:
                content = self._fetch(cid)
            except InfrastructureError:
                logger.warning("Failed to fetch support file %s", cid, exc_info=True)
                continue
            path = root / f"support_{cid}"
            path.write_bytes(content)
            files.append(EvidenceFile(path, detect_media_type(content), entry.get("name"), entry.get("description")))
        return files

    def parse(self, root: Path) -> Manifest:
        root = Path(root)
        data = self._read_manifest(root)
        jury = data.get("juryParameters") or {}
        outcome_count = int(jury.get("NUMBER_OF_OUTCOMES") or 2)
        prompt, references, outcomes = self._primary_content(self._read_primary(root, data["primary"]), outcome_count)
        models = [
            PanelEntry.from_dict({
                "provider": node.get("AI_PROVIDER"),
                "model": node.get("AI_MODEL"),
                "weight": node.get("WEIGHT"),
                "count": node.get("NO_COUNTS") or 1,
            })
            for node in jury.get("AI_NODES") or DEFAULT_NODES
        ]
        manifest = Manifest(
            root=root,
            version=str(data["version"]),
            prompt=prompt,
            models=models,
            iterations=int(jury.get("ITERATIONS") or 1),
            outcomes=outcomes,
            references=references,
            name=data.get("name"),
            addendum=data.get("addendum"),
            bcids=dict(data.get("bCIDs") or {}),
            additional=self._additional(root, data.get("additional") or []),
            support=self._support(root, data.get("support") or []),
        )
        logger.info(
            "Parsed manifest %s: %d model(s), %d outcome(s), %d attachment file(s)",
            manifest.name or root.name,
            len(manifest.models),
            len(manifest.outcomes),
            len(manifest.additional) + len(manifest.support),
        )
        return manifest

    def parse_multiple(self, paths: Dict[str, Path], ids: Sequence[str]) -> Tuple[Manifest, List[SecondaryManifest]]:
        """Parse the primary bundle and check the secondaries against its ``bCIDs``."""
        if not ids:
            raise ValidationError("At least one evidence identifier is required")
        primary = self.parse(paths[ids[0]])
        if len(ids) == 1:
            return primary, []
        if not primary.bcids:
            raise ValidationError("Primary manifest is missing bCIDs section but multiple CIDs were provided")
        if len(primary.bcids) != len(ids) - 1:
            raise ValidationError(
                f"Number of bCIDs in manifest ({len(primary.bcids)}) does not match "
                f"number of provided bCIDs ({len(ids) - 1})"
            )
        secondaries: List[SecondaryManifest] = []
        for cid, expected in zip(ids[1:], primary.bcids):
            manifest = self.parse(paths[cid])
            if manifest.name and manifest.name != expected:
                logger.warning(
                    'bCID manifest name "%s" does not match expected name "%s" from primary manifest',
                    manifest.name,
                    expected,
                )
            secondaries.append(SecondaryManifest(cid=cid, expected_name=expected, manifest=manifest))
        return primary, secondaries

    def combine_query(
        self,
        primary: Manifest,
        secondaries: Sequence[SecondaryManifest],
        addendum: str = "",
    ) -> QueryObject:
        prompt = primary.prompt
        references = ""
        attachments = primary.attachments()
        for secondary in secondaries:
            manifest = secondary.manifest
            description = primary.bcids.get(secondary.expected_name, secondary.expected_name)
            prompt += f"\n\n**\n{description}:\n"
            if manifest.name:
                prompt += f"Name: {manifest.name}\n"
            prompt += manifest.prompt
            if manifest.references:
                references += f"{manifest.name or secondary.expected_name}: \n"
                references += "\n".join(manifest.references) + "\n\n"
            attachments.extend(manifest.attachments())
        if references:
            prompt += "\n\nReferences:\n" + references
        return QueryObject.build(
            prompt=self._with_addendum(prompt, primary, addendum),
            models=primary.models,
            iterations=primary.iterations,
            outcomes=primary.outcomes,
            attachments=attachments,
        )

    def query_from_manifest(self, manifest: Manifest, addendum: str = "") -> QueryObject:
        """Single-bundle query."""
        return QueryObject.build(
            prompt=self._with_addendum(manifest.prompt, manifest, addendum),
            models=manifest.models,
            iterations=manifest.iterations,
            outcomes=manifest.outcomes,
            attachments=manifest.attachments(),
        )

    @staticmethod
    def _with_addendum(prompt: str, manifest: Manifest, addendum: str) -> str:
        if not (addendum and manifest.addendum):
            return prompt
        cleaned = sanitize_addendum(addendum)
        logger.info("Adding addendum to query: %s: %s", manifest.addendum, cleaned)
        return f"{prompt}\n\nAddendum: \n{manifest.addendum}: {cleaned}"
