"""
main.py - Command-line entry point for the opportunity ingest pipeline.

    python main.py                      run every enabled source
    python main.py --source papercall   run one source
    python main.py --timeout 600        bound the whole run
    python main.py --serve              serve the HTTP API
"""

import argparse
import sys
from datetime import datetime

import uvicorn

from api import build_orchestrator, create_app
from config import RUN_TIMEOUT_SECONDS, validate_config
from database import Database
from errors import OrchestratorFatalError, UnknownSourceError
from models import Identity, RunStatus
from monitoring import setup_logging, get_logger

SERVICE_IDENTITY = Identity(user_id=None, role="service")


def positive_seconds(value: str) -> float:
    seconds = float(value)
    if seconds <= 0:
        raise argparse.ArgumentTypeError("timeout must be a positive number of seconds")
    return seconds


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Ingest speaking opportunities from every configured source.")
    parser.add_argument("--source", help="Run only this source tag")
    parser.add_argument("--timeout", type=positive_seconds, default=None, help="Whole-run timeout in seconds")
    parser.add_argument("--serve", action="store_true", help="Serve the HTTP API instead of running once")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def serve(host: str, port: int):
    uvicorn.run(create_app(), host=host, port=port)


def run(source=None, timeout_seconds=None) -> int:
    """Execute one run as the scheduler's service identity. Returns an exit code."""
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("OPPORTUNITY INGEST - Starting run")
    logger.info(f"Timestamp: {datetime.now().isoformat()}")
    logger.info("=" * 60)

    db = Database()
    db.init_db()
    orchestrator = build_orchestrator(db)

    try:
        if source:
            summary = orchestrator.run_source(source, SERVICE_IDENTITY)
        else:
            timeout = timeout_seconds if timeout_seconds is not None else RUN_TIMEOUT_SECONDS
            summary = orchestrator.run_all(SERVICE_IDENTITY, timeout_seconds=timeout)
    except UnknownSourceError as e:
        logger.error(str(e))
        return 2
    except OrchestratorFatalError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    for result in summary.results:
        line = f"  {result.source}: found {result.found}, {result.inserted} new, {result.updated} updated"
        if result.error:
            line += f" ({result.error})"
        logger.info(line)

    logger.info(f"OPPORTUNITY INGEST - Run complete ({summary.status.value})")
    return 0 if summary.status is not RunStatus.FAILED else 1


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    logger = get_logger("main")

    for warning in validate_config():
        logger.warning(f"Config: {warning}")

    if args.serve:
        serve(args.host, args.port)
        return 0
    return run(source=args.source, timeout_seconds=args.timeout)


if __name__ == "__main__":
    sys.exit(main())
