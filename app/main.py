import argparse
import signal
import sys
import threading
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from types import FrameType

from app.ai.exceptions import AdapterPermanentError
from app.ai.labels import DEFAULT_THREAT_LABELS
from app.analysis.scanner import build_scanner
from app.config.settings import Settings
from app.curation.curator import build_curator
from app.database.connection import close_pool, init_pool
from app.database.models import CURATED_FIELDS
from app.database.repositories.curated_events_repository import CuratedEventsRepository
from app.database.schema import create_schema
from app.ingestion.loader import build_loader
from app.logging.logger import Log
from app.staging.codec import is_ndjson, parse_records
from app.staging.exceptions import StagingError
from app.staging.stager import build_stager
from app.worker.stage_runner import StageRunner
from app.worker.worker import Worker


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logpipe",
        description="Stage, ingest, curate and analyze structured log events.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create pipeline tables if missing")

    stage = commands.add_parser("stage", help="Stage events from a JSON or NDJSON file")
    stage.add_argument("input", type=Path)
    stage.add_argument("--batch-size", type=int, default=None)

    commands.add_parser("refresh", help="Load new staged files into the raw store")

    curate = commands.add_parser("curate", help="Project raw records into curated events")
    curate.add_argument("--since", type=datetime.fromisoformat, default=None)
    curate.add_argument("--rebuild", action="store_true")

    status = commands.add_parser("status", help="Show load status")
    status.add_argument("file_id", nargs="?")

    classify = commands.add_parser("classify", help="Classify curated events")
    classify.add_argument("--labels", default=",".join(DEFAULT_THREAT_LABELS))
    classify.add_argument(
        "--limit",
        type=_positive_int,
        default=None,
        help="Classify only the N most recent events by event time",
    )

    summarize = commands.add_parser("summarize", help="Summarize curated events")
    summarize.add_argument("--by", choices=CURATED_FIELDS, default=None)

    run = commands.add_parser("run", help="Refresh and curate on a timer")
    run.add_argument("--max-cycles", type=int, default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point: parse command -> initialize pool -> run one stage."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level)

    if args.command == "stage":
        return _stage(settings, args.input, args.batch_size)

    init_pool(settings)
    try:
        return _dispatch(settings, args)
    finally:
        close_pool()


def _dispatch(settings: Settings, args: argparse.Namespace) -> int:
    cancel_event = threading.Event()
    _install_signal_handlers(cancel_event)

    if args.command == "init-db":
        create_schema()
        Log.info("Schema ready")
        return 0

    if args.command == "refresh":
        result = build_loader(settings).refresh(cancel_event=cancel_event)
        return 1 if result.files_failed else 0

    if args.command == "curate":
        curator = build_curator(settings)
        if args.rebuild:
            curator.rebuild(cancel_event=cancel_event)
        else:
            curator.curate(since=args.since, cancel_event=cancel_event)
        return 0

    if args.command == "status":
        return _status(settings, args.file_id)

    if args.command == "classify":
        return _classify(settings, args.labels, args.limit, cancel_event)

    if args.command == "summarize":
        return _summarize(settings, args.by, cancel_event)

    if args.command == "run":
        runner = StageRunner(build_loader(settings), build_curator(settings), cancel_event)
        Worker(runner, settings, cancel_event).run(max_cycles=args.max_cycles)
        return 0

    raise ValueError(f"Unknown command {args.command}")


def _stage(settings: Settings, input_path: Path, batch_size: int | None) -> int:
    try:
        records = parse_records(input_path.read_bytes(), ndjson=is_ndjson(input_path.name))
        file_ids = build_stager(settings).stage(
            records, batch_size or settings.stage_batch_size
        )
    except (OSError, StagingError) as exc:
        Log.error(f"Staging failed: {exc}", input=str(input_path))
        return 1
    for file_id in file_ids:
        print(file_id)
    return 0


def _status(settings: Settings, file_id: str | None) -> int:
    loader = build_loader(settings)
    if file_id is not None:
        status = loader.status(file_id)
        print(f"{file_id}\t{status}")
        return 0
    for status, count in loader.status_counts().items():
        print(f"{status}_files\t{count}")
    print(f"loaded_records\t{loader.loaded_record_count()}")
    return 0


def _classify(
    settings: Settings,
    labels: str,
    limit: int | None,
    cancel_event: threading.Event,
) -> int:
    vocabulary = [label.strip() for label in labels.split(",") if label.strip()]
    repo = CuratedEventsRepository()
    events = repo.latest(limit) if limit is not None else list(repo.iter_all())
    try:
        scan = build_scanner(settings).classify_events(events, vocabulary, cancel_event)
    except AdapterPermanentError as exc:
        Log.error(f"Classify command failed: {exc}")
        return 1
    for label, count in scan.label_counts().most_common():
        print(f"{label}\t{count}")
    return 0


def _summarize(
    settings: Settings,
    field: str | None,
    cancel_event: threading.Event,
) -> int:
    scanner = build_scanner(settings)
    events = list(CuratedEventsRepository().iter_all())
    if field is None:
        try:
            outcome = scanner.summarize_events(events, cancel_event)
        except AdapterPermanentError as exc:
            Log.error(f"Summarize command failed: {exc}")
            return 1
        print(outcome.text)
        return 0
    for group, outcome in scanner.summarize_by(events, field, cancel_event).items():
        print(f"== {group} ({outcome.event_count} events)\n{outcome.text}\n")
    return 0


def _install_signal_handlers(cancel_event: threading.Event) -> None:
    def _request_stop(signum: int, _frame: FrameType | None) -> None:
        Log.warning(f"Received signal {signum}, stopping after current batch")
        cancel_event.set()

    signal.signal(signal.SIGTERM, _request_stop)


if __name__ == "__main__":
    sys.exit(main())
