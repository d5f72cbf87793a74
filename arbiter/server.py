"""FastAPI server for the arbiter node."""
from __future__ import annotations

from typing import Any
import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from arbiter.archive import ArchiveService
from arbiter.audit import AuditLog
from arbiter.commitments import CommitmentManager, build_store
from arbiter.config import Config, get_config
from arbiter.errors import ArbiterError, InfrastructureError, ProviderError, ValidationError
from arbiter.evidence import ManifestParser
from arbiter.ipfs import IpfsClient, build_publisher
from arbiter.models.gateway import ProviderGateway
from arbiter.oracle import EvaluateHandler
from arbiter.pipeline import ArbiterPipeline
from arbiter.query import QueryObject

logger = logging.getLogger(__name__)

app = FastAPI(title="Arbiter")

RANK_STATUS = {
    ValidationError: 400,
    ProviderError: 502,
}


def configure(
    target: FastAPI,
    config: Config,
    gateway: ProviderGateway | None = None,
    publisher: Any = None,
    store: Any = None,
    fetcher: Any = None,
) -> None:
    """Build every collaborator once and hang it off ``target.state``."""
    gateway = gateway or ProviderGateway.from_config(config)
    fetch = fetcher or IpfsClient.from_config(config).fetch
    pipeline = ArbiterPipeline(config, gateway=gateway, audit=AuditLog(config.interactions_log_path))
    commitments = CommitmentManager(
        store if store is not None else build_store(config),
        publisher if publisher is not None else build_publisher(config),
        max_age_seconds=config.commit_max_age_seconds,
    )
    target.state.config = config
    target.state.pipeline = pipeline
    target.state.commitments = commitments
    target.state.handler = EvaluateHandler(
        pipeline=pipeline,
        archive=ArchiveService(fetch),
        parser=ManifestParser(fetch),
        commitments=commitments,
    )
    logger.info("Arbiter configured; justifier %s", config.justifier)


@app.on_event("startup")
def _startup() -> None:
    if getattr(app.state, "handler", None) is None:
        configure(app, get_config())


@app.get("/health")
async def health():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "arbiter"}


@app.get("/api/models")
async def models_api(request: Request):
    models = await run_in_threadpool(request.app.state.pipeline.discover_models)
    return {"models": models}


def _rank_error(exc: ArbiterError) -> JSONResponse:
    body = {**exc.to_dict(), "scores": [], "justification": ""}
    return JSONResponse(body, status_code=RANK_STATUS.get(type(exc), 500))


@app.post("/rank-and-justify")
@app.post("/api/rank-and-justify")
async def rank_and_justify(request: Request):
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return _rank_error(ValidationError("Invalid input. Request body must be valid JSON."))
    try:
        query = QueryObject.from_payload(payload)
        result = await run_in_threadpool(request.app.state.pipeline.run, query)
    except ArbiterError as exc:
        logger.error("rank-and-justify failed (%s): %s", exc.kind.value, exc.message)
        return _rank_error(exc)
    except Exception as exc:
        logger.exception("rank-and-justify failed unexpectedly")
        return _rank_error(InfrastructureError(str(exc)))
    return result.to_dict()


@app.post("/evaluate")
async def evaluate(request: Request):
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = None
    envelope = await run_in_threadpool(request.app.state.handler.handle, payload)
    return JSONResponse(envelope, status_code=envelope["statusCode"])


def main():
    import uvicorn
    config = get_config()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    host = config.server.get("host", "127.0.0.1")
    port = int(config.server.get("port", 8080))
    uvicorn.run("arbiter.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
