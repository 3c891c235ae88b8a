from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from .config import IngestConfig, load_config
from .doctor import run_doctor
from .ingest.artifacts import ScratchDirCleaner
from .ingest.models import IngestStatus
from .ingest.policy import match_resource, resource_key
from .logging_config import get_logger, setup_logging
from .pipeline import build_pipeline

logger = get_logger(__name__)

_EXIT_CODES = {
    IngestStatus.SUCCEEDED: 0,
    IngestStatus.EXHAUSTED: 1,
    IngestStatus.IN_PROGRESS: 2,
    IngestStatus.DENIED: 3,
}


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _config(args: argparse.Namespace) -> IngestConfig:
    return load_config(args.config)


def cmd_ingest(args: argparse.Namespace) -> None:
    config = _config(args)

    async def run() -> Any:
        async with build_pipeline(config) as pipeline:
            return await pipeline.orchestrator.ingest(args.url, args.dest)

    result = asyncio.run(run())
    _print_json(result.to_dict())
    if not result.success:
        sys.exit(_EXIT_CODES[result.status])


def cmd_recommend(args: argparse.Namespace) -> None:
    config = _config(args)

    async def run() -> Any:
        async with build_pipeline(config) as pipeline:
            return await pipeline.orchestrator.get_recommended_method(args.url)

    _print_json(asyncio.run(run()).to_dict())


def cmd_disk(args: argparse.Namespace) -> None:
    config = _config(args)

    async def run() -> Any:
        async with build_pipeline(config) as pipeline:
            if args.safe_for is not None:
                return (await pipeline.disk.is_safe_for_operation(args.safe_for)).to_dict()
            return (await pipeline.disk.get_status()).to_dict()

    _print_json(asyncio.run(run()))


def cmd_locks(args: argparse.Namespace) -> None:
    """Show how URLs map to lock keys. Lock state itself lives in the server process."""
    if not args.urls:
        print("Locks are held in memory by a running server; query GET /api/ingest/locks there.")
        return
    rows = []
    for url in args.urls:
        ref = match_resource(url)
        rows.append({
            "url": url,
            "key": resource_key(url),
            "site": ref.site.value if ref else None,
            "matcher": ref.matcher if ref else None,
        })
    _print_json({"keys": rows})


def cmd_cleanup(args: argparse.Namespace) -> None:
    config = _config(args)
    minutes = config.disk.cleanup_min_age_minutes if args.min_age is None else args.min_age
    cleaner = ScratchDirCleaner(config.scratch_dir, min_age_seconds=minutes * 60.0)
    _print_json(cleaner.sweep().to_dict())


def cmd_serve(args: argparse.Namespace) -> None:
    from .service.app import create_app

    app = create_app(config=_config(args), monitor=not args.no_monitor)

    import uvicorn

    logger.info("Serving on http://%s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


def cmd_doctor(args: argparse.Namespace) -> None:
    rep = run_doctor(_config(args))
    print("MediaIngest doctor\n")
    for name, data in rep.checks.items():
        print(f"- {name}:")
        for k, v in data.items():
            print(f"    {k}: {v}")
    print("\nOK" if rep.ok else "\nNOT OK (fix missing requirements above)")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="mediaingest", description="MediaIngest CLI")
    parser.add_argument("--config", type=Path, default=None, help="Path to a YAML config file")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file (default: $MI_LOG_FILE)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    i = sub.add_parser("ingest", help="Download one URL into scratch storage.")
    i.add_argument("url", type=str)
    i.add_argument("--dest", type=Path, default=None, help="Output path (defaults to the scratch dir)")
    i.set_defaults(func=cmd_ingest)

    r = sub.add_parser("recommend", help="Probe a URL and report which method would be used.")
    r.add_argument("url", type=str)
    r.set_defaults(func=cmd_recommend)

    d = sub.add_parser("disk", help="Show disk health for the scratch volume.")
    d.add_argument("--safe-for", type=float, default=None, metavar="MB", help="Check admission for a download of MB")
    d.set_defaults(func=cmd_disk)

    lk = sub.add_parser("locks", help="Show the lock keys URLs map to.")
    lk.add_argument("urls", nargs="*", type=str)
    lk.set_defaults(func=cmd_locks)

    c = sub.add_parser("cleanup", help="Remove aged scratch files.")
    c.add_argument("--min-age", type=float, default=None, metavar="MINUTES")
    c.set_defaults(func=cmd_cleanup)

    s = sub.add_parser("serve", help="Run the HTTP ingestion and health service.")
    s.add_argument("--host", type=str, default="127.0.0.1")
    s.add_argument("--port", type=int, default=8780)
    s.add_argument("--no-monitor", action="store_true", help="Do not start the background disk monitor")
    s.set_defaults(func=cmd_serve)

    doc = sub.add_parser("doctor", help="Check local system dependencies (ffmpeg, df, yt-dlp).")
    doc.set_defaults(func=cmd_doctor)

    args = parser.parse_args(argv)

    setup_logging(log_file=args.log_file)

    args.func(args)


if __name__ == "__main__":
    main()
