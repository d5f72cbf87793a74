"""Oracle-facing evaluation: identifiers in, fulfillment envelope out."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging
import tempfile

from arbiter.archive import ArchiveService
from arbiter.commitments import CommitmentManager, Mode, parse_mode
from arbiter.errors import (
    ArbiterError,
    CommitmentNotFoundError,
    InfrastructureError,
    ProviderError,
    ValidationError,
)
from arbiter.evidence import ManifestParser
from arbiter.ipfs import publish_record
from arbiter.pipeline import ArbiterPipeline
from arbiter.query import ArbitrationResult, error_record

logger = logging.getLogger(__name__)

TEMP_PREFIX = "arbiter-extract-"

ERROR_STATUS = {
    ValidationError: 400,
    CommitmentNotFoundError: 404,
}


def split_identifiers(value: str) -> Tuple[List[str], str]:
    """``cid1,cid2:addendum`` to ``(["cid1", "cid2"], "addendum")``."""
    ids_part, _, addendum = value.partition(":")
    ids = [item.strip() for item in ids_part.split(",") if item.strip()]
    if not ids:
        raise ValidationError("Invalid request: no evidence identifier supplied")
    return ids, addendum


def success_envelope(job_id: Any, result: ArbitrationResult, justification_cid: str) -> Dict[str, Any]:
    return {
        "jobRunID": job_id,
        "statusCode": 200,
        "status": "success",
        "data": {
            "aggregatedScore": result.vector or [0],
            "justificationCID": justification_cid,
        },
    }


def commit_envelope(job_id: Any, token: str) -> Dict[str, Any]:
    return {
        "jobRunID": job_id,
        "statusCode": 200,
        "status": "success",
        "data": {
            "aggregatedScore": [token],
            "justificationCID": "",
        },
    }


def provider_error_envelope(job_id: Any, message: str, justification_cid: Optional[str]) -> Dict[str, Any]:
    return {
        "jobRunID": job_id,
        "statusCode": 200,
        "data": {
            "aggregatedScore": [0],
            "justification": "",
            "error": message,
            "justificationCID": justification_cid,
        },
    }


def error_envelope(job_id: Any, status_code: int, message: str) -> Dict[str, Any]:
    return {
        "jobRunID": job_id,
        "status": "errored",
        "statusCode": status_code,
        "error": message,
        "data": {
            "aggregatedScore": [0],
            "error": message,
        },
    }


class EvaluateHandler:
    def __init__(
        self,
        pipeline: ArbiterPipeline,
        archive: ArchiveService,
        parser: ManifestParser,
        commitments: CommitmentManager,
        temp_root: Optional[Path] = None,
    ) -> None:
        self.pipeline = pipeline
        self.archive = archive
        self.parser = parser
        self.commitments = commitments
        self.temp_root = temp_root

    @staticmethod
    def _identifier(request: Any) -> str:
        if not isinstance(request, dict) or request.get("id") in (None, ""):
            raise ValidationError('Invalid request: "id" is required')
        data = request.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("cid"), str) or not data["cid"].strip():
            raise ValidationError('Invalid request: "data.cid" is required')
        return data["cid"].strip()

    def _evaluate(self, ids: List[str], addendum: str, workdir: Path) -> ArbitrationResult:
        paths = self.archive.fetch_all(ids, workdir)
        primary, secondaries = self.parser.parse_multiple(paths, ids)
        if len(ids) == 1:
            query = self.parser.query_from_manifest(primary, addendum)
        else:
            logger.info("Combining %d secondary bundle(s) into the primary query", len(secondaries))
            query = self.parser.combine_query(primary, secondaries, addendum)
        return self.pipeline.run(query)

    def _publish_error(self, message: str) -> Optional[str]:
        try:
            return publish_record(self.commitments.publisher, error_record(message))
        except InfrastructureError as exc:
            logger.error("Failed to publish provider-error record: %s", exc.message)
            return None

    def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        job_id = request.get("id") if isinstance(request, dict) else None
        workdir: Optional[Path] = None
        try:
            mode, rest = parse_mode(self._identifier(request))
            logger.info("Job %s: mode %s, identifiers %r", job_id, mode.value, rest)
            if mode is Mode.REVEAL:
                result, cid = self.commitments.reveal(rest)
                return success_envelope(job_id, result, cid)

            ids, addendum = split_identifiers(rest)
            workdir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=self.temp_root))
            result = self._evaluate(ids, addendum, workdir)
            if mode is Mode.COMMIT:
                return commit_envelope(job_id, self.commitments.commit(result))
            return success_envelope(job_id, result, self.commitments.publish(result))
        except ProviderError as exc:
            logger.error("Job %s: provider failure: %s", job_id, exc.message)
            return provider_error_envelope(job_id, exc.message, self._publish_error(exc.message))
        except ArbiterError as exc:
            logger.error("Job %s failed (%s): %s", job_id, exc.kind.value, exc.message)
            return error_envelope(job_id, ERROR_STATUS.get(type(exc), 500), exc.message)
        except Exception as exc:
            logger.exception("Job %s failed unexpectedly", job_id)
            return error_envelope(job_id, 500, str(exc))
        finally:
            self.archive.cleanup(workdir)
