"""
docketq-digest - run one agenda digest pass from cron.

Usage:
    docketq-digest                          # scheduled run against the local store
    docketq-digest --test-email me@x.com    # send one test email
    docketq-digest --preview > agenda.html  # render the template with sample data
    docketq-digest --init-db                # create the agenda tables

Prints the JSON run summary; exits 1 on a run-level failure.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from docketq.agenda.dispatcher import AgendaDigestDispatcher
from docketq.agenda.repository import SqliteAgendaStore
from docketq.config import DigestConfig
from docketq.delivery.mailer import build_mail_sender
from docketq.errors import ConfigurationError, DigestError
from docketq.infrastructure.database import init_database
from docketq.observability.logging import get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docketq-digest",
        description="Send the daily legal agenda digest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", type=Path, help="SQLite database path (default: DOCKETQ_DB_PATH)")
    parser.add_argument("--test-email", help="Send a single test email to this address")
    parser.add_argument("--template", help="Template name (default: agenda_summary)")
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Print the rendered template with sample data and exit",
    )
    parser.add_argument("--init-db", action="store_true", help="Create the agenda tables and exit")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.init_db:
        init_database(args.db)
        print(f"Initialized agenda schema at {args.db or 'default path'}")
        return 0

    try:
        config = DigestConfig.from_env()
        if not args.preview:
            config.validate()
    except ConfigurationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        return 2

    store = SqliteAgendaStore(args.db)

    try:
        if args.preview:
            # Preview never sends, so no provider credentials are required
            dispatcher = AgendaDigestDispatcher(config, store, sender=_NoSender())
            print(dispatcher.preview(args.template))
            return 0

        dispatcher = AgendaDigestDispatcher(config, store, build_mail_sender(config))
        if args.test_email:
            summary = dispatcher.send_test(args.test_email, args.template)
        else:
            summary = dispatcher.run(template=args.template)
    except DigestError as e:
        logger.error("Agenda digest failed: %s", e)
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 1

    print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    return 0


class _NoSender:
    def send(self, message):  # noqa: ANN001, ANN201
        raise ConfigurationError("Preview mode does not send email")


if __name__ == "__main__":
    sys.exit(main())
