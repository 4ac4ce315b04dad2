"""
Command line entry point.

    osmgraph list maps/
    osmgraph load maps/copenhagen.osm --db sqlite:///osm.db
    osmgraph fetch --db sqlite:///osm.db
    osmgraph stats --db OSM_DB_ --env-file .env
"""

from __future__ import annotations

import argparse
import logging
import sys

from osmgraph.config import LoaderConfig
from osmgraph.db.core import open_engine
from osmgraph.db.fetcher import EntityFetcher
from osmgraph.db.schema import table_counts
from osmgraph.exceptions import OsmGraphError
from osmgraph.pipeline import list_candidate_files, load_file

logger = logging.getLogger("osmgraph")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="osmgraph",
        description="Load OpenStreetMap extracts into a relational store and read them back.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List OSM extracts in a directory")
    list_cmd.add_argument("directory")

    def add_db_args(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument(
            "--db",
            required=True,
            help="sqlite:///file.db, postgresql://... or an env prefix such as OSM_DB_",
        )
        cmd.add_argument("--env-file", default=".env", help="Credentials file for env prefixes")

    load_cmd = sub.add_parser("load", help="Parse an extract and load it")
    load_cmd.add_argument("file")
    add_db_args(load_cmd)
    load_cmd.add_argument(
        "--max-parameters",
        type=int,
        default=None,
        help="Bound-parameter ceiling per statement (defaults to the backend's)",
    )

    fetch_cmd = sub.add_parser("fetch", help="Read every entity back and print counts")
    add_db_args(fetch_cmd)

    stats_cmd = sub.add_parser("stats", help="Print row counts per table")
    add_db_args(stats_cmd)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "list":
            for path in list_candidate_files(args.directory):
                print(path)
            return 0

        with open_engine(args.db, env_path=args.env_file) as engine:
            if args.command == "load":
                config = LoaderConfig(max_parameters=args.max_parameters)
                result = load_file(args.file, engine, config)
                for table, rows in result.rows.items():
                    print(f"{table}\t{rows} rows\t{result.statements[table]} statements")
            elif args.command == "fetch":
                for kind, count in EntityFetcher(engine).fetch_all().counts().items():
                    print(f"{kind}\t{count}")
            elif args.command == "stats":
                print(table_counts(engine).to_string(index=False))
    except (OsmGraphError, OSError, ValueError) as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
