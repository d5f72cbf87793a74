"""Command line interface for the arbiter node."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from arbiter.archive import ArchiveService
from arbiter.commitments import CommitmentManager, build_store
from arbiter.config import get_config
from arbiter.errors import ArbiterError
from arbiter.evidence import ManifestParser
from arbiter.ipfs import IpfsClient, build_publisher
from arbiter.oracle import EvaluateHandler
from arbiter.pipeline import ArbiterPipeline
from arbiter.query import QueryObject


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _parse_model(value: str) -> Dict[str, Any]:
    """``provider:model[:weight[:count]]``; the model part may itself contain colons."""
    parts = value.split(":")
    if len(parts) < 2:
        raise argparse.ArgumentTypeError(f"expected provider:model[:weight[:count]], got {value!r}")
    weight, count = 1.0, 1
    tail: List[str] = []
    while len(parts) > 2 and len(tail) < 2 and _is_number(parts[-1]):
        tail.insert(0, parts.pop())
    if tail:
        weight = float(tail[0])
    if len(tail) > 1:
        count = int(float(tail[1]))
    return {"provider": parts[0], "model": ":".join(parts[1:]), "weight": weight, "count": count}


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def _rank_payload(args: argparse.Namespace) -> Dict[str, Any]:
    if args.input_file:
        return json.loads(Path(args.input_file).read_text())
    payload: Dict[str, Any] = {
        "prompt": args.prompt,
        "models": args.model or [],
        "iterations": args.iterations,
    }
    if args.outcome:
        payload["outcomes"] = args.outcome
    return payload


def cmd_models(args: argparse.Namespace) -> None:
    pipeline = ArbiterPipeline(get_config())
    _print({"models": pipeline.discover_models()})


def cmd_rank(args: argparse.Namespace) -> int:
    pipeline = ArbiterPipeline(get_config())
    try:
        query = QueryObject.from_payload(_rank_payload(args))
        result = pipeline.run(query)
    except ArbiterError as exc:
        _print(exc.to_dict())
        return 1
    _print(result.to_dict())
    return 0


def cmd_evaluate(args: argparse.Namespace) -> int:
    config = get_config()
    fetch = IpfsClient.from_config(config).fetch
    handler = EvaluateHandler(
        pipeline=ArbiterPipeline(config),
        archive=ArchiveService(fetch),
        parser=ManifestParser(fetch),
        commitments=CommitmentManager(
            build_store(config),
            build_publisher(config),
            max_age_seconds=config.commit_max_age_seconds,
        ),
    )
    envelope = handler.handle({"id": args.id, "data": {"cid": args.cid}})
    _print(envelope)
    if handler.commitments.last_purge is not None:
        handler.commitments.last_purge.join(timeout=10.0)
    return 0 if envelope["statusCode"] == 200 else 1


def cmd_purge(args: argparse.Namespace) -> None:
    config = get_config()
    max_age = args.max_age_hours * 3600 if args.max_age_hours is not None else config.commit_max_age_seconds
    removed = build_store(config).purge_stale(max_age)
    _print({"ok": True, "removed": removed})


def cmd_serve(args: argparse.Namespace) -> None:
    from arbiter.server import main as serve
    serve()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="arbiter")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run the HTTP server")
    sub.add_parser("models", help="List models from every provider")

    rank = sub.add_parser("rank", help="Arbitrate a prompt with a weighted panel")
    rank.add_argument("--input-file", help="JSON body as accepted by /rank-and-justify")
    rank.add_argument("--prompt")
    rank.add_argument("--model", action="append", type=_parse_model, help="provider:model[:weight[:count]]")
    rank.add_argument("--outcome", action="append")
    rank.add_argument("--iterations", type=int, default=1)

    evaluate = sub.add_parser("evaluate", help="Run an oracle evaluation for an identifier string")
    evaluate.add_argument("--cid", required=True, help="[mode:]cid[,cid...][:addendum]")
    evaluate.add_argument("--id", default="cli")

    purge = sub.add_parser("purge", help="Delete stale unrevealed commitments")
    purge.add_argument("--max-age-hours", type=float)
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "models":
        cmd_models(args)
    elif args.command == "rank":
        if not args.input_file and not args.prompt:
            parser.error("rank requires --prompt or --input-file")
        sys.exit(cmd_rank(args))
    elif args.command == "evaluate":
        sys.exit(cmd_evaluate(args))
    elif args.command == "purge":
        cmd_purge(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
