"""Entry point: score check-in payloads or smooth fix sequences from the command line.

    python main.py score request.json place.json
    python main.py smooth fixes.json --filter moving-average --window 5
"""

import argparse
import datetime
import json
import logging
import logging.handlers
import os
import sys

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import database
from checkin import verify_check_in
from domain import Place, PositionFix
from errors import CheckInValidationError
from integrity import load_scoring_config
from position_filter import DEFAULT_WINDOW_SIZE, FILTER_KINDS
from tracking import TrackingSession

logger = logging.getLogger("checkinintegrity")

EXIT_APPROVED = 0
EXIT_REJECTED = 1
EXIT_INVALID = 2


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(level: int = logging.INFO) -> None:
    log_dir = os.environ.get("LOG_DIR", ".")
    log_file = os.path.join(log_dir, "checkin-integrity.log")

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            # stdout carries command output
            logging.StreamHandler(sys.stderr),
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=5 * 1024 * 1024, backupCount=3,
            ),
        ],
    )
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _load_json(path: str):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def _parse_time(value: str) -> datetime.datetime:
    ts = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def _load_config(database_url: str | None):
    engine = create_engine(database_url) if database_url else database.engine
    database.init_db(bind=engine)
    db = sessionmaker(bind=engine)()
    try:
        return load_scoring_config(db)
    finally:
        db.close()


def cmd_score(args) -> int:
    raw = _load_json(args.request)
    place = Place.from_dict(_load_json(args.place))
    config = _load_config(args.database_url)
    server_time = _parse_time(args.server_time) if args.server_time else None

    try:
        outcome = verify_check_in(raw, place, config=config, server_time=server_time)
    except CheckInValidationError as e:
        print(json.dumps({
            "error": "Validation failed",
            "errors": [err.to_dict() for err in e.errors],
        }, indent=2))
        return EXIT_INVALID

    print(json.dumps(outcome.to_dict(), indent=2))
    return EXIT_APPROVED if outcome.result.valid else EXIT_REJECTED


def cmd_smooth(args) -> int:
    fixes = _load_json(args.fixes)
    kwargs = {"window_size": args.window} if args.filter == "moving-average" else {}
    session = TrackingSession.create(user_id="cli", kind=args.filter, **kwargs)

    for pt in fixes:
        fix = PositionFix(
            latitude=float(pt["latitude"]),
            longitude=float(pt["longitude"]),
            accuracy=float(pt["accuracy"]),
            timestamp=_parse_time(pt["timestamp"]),
            speed=pt.get("speed"),
            heading=pt.get("heading"),
        )
        print(json.dumps(session.smooth(fix).to_dict()))

    logger.info("Smoothed %d fixes with %s filter", session.updates, args.filter)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="checkin-integrity", description=__doc__.splitlines()[0])
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    score = sub.add_parser("score", help="score a check-in request against a place")
    score.add_argument("request", help="check-in request JSON file")
    score.add_argument("place", help="place JSON file")
    score.add_argument("--server-time", help="ISO 8601 server time (default: now)")
    score.add_argument("--database-url", help="configuration database (default: $DATABASE_URL)")
    score.set_defaults(func=cmd_score)

    smooth = sub.add_parser("smooth", help="smooth a JSON list of fixes")
    smooth.add_argument("fixes", help="JSON file holding a list of fixes")
    smooth.add_argument("--filter", choices=FILTER_KINDS, default="kalman")
    smooth.add_argument("--window", type=int, default=DEFAULT_WINDOW_SIZE, help="moving-average window size")
    smooth.set_defaults(func=cmd_smooth)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
