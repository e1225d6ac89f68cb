"""Command-line interface for running the analyses.

Provides subcommands: `run`, `list`, and `info`. Each command is implemented
as a `cmd_*` function that accepts an argparse namespace.
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path

from dotenv import load_dotenv
import pandas as pd

from analytics_pipeline.analyses import ANALYSES, get_analysis, run_named
from analytics_pipeline.analyses.orchestrator import ResultSink
from analytics_pipeline.config import Settings, get_settings
from analytics_pipeline.db import collection_info, get_client, get_db
from analytics_pipeline.errors import PipelineError
from analytics_pipeline.logging_config import configure_logging, level_from_env
from analytics_pipeline.report import format_report
from analytics_pipeline.sinks import JsonFileSink, MongoSink

log = logging.getLogger(__name__)


# --------------------------------------------------
# Helpers
# --------------------------------------------------
def _settings_for(args: argparse.Namespace) -> Settings:
    """Return settings from the environment with command-line overrides applied."""
    s = get_settings()
    overrides: dict[str, object] = {}
    if getattr(args, "output_dir", None) is not None:
        overrides["output_dir"] = Path(args.output_dir)
    if getattr(args, "strict", False):
        overrides["strict"] = True
    return dataclasses.replace(s, **overrides) if overrides else s


def _selected(name: str) -> list[str]:
    return list(ANALYSES) if name == "all" else [name]


# --------------------------------------------------
# RUN
# --------------------------------------------------
def cmd_run(args: argparse.Namespace) -> None:
    """Run one or all analyses, write their JSON results and print reports.

    Args:
        args: argparse namespace with `analysis`, `output_dir`, `strict`,
            `no_report` and `save_to_mongo`.
    """
    s = _settings_for(args)
    results_client = get_client(s.mongo_uri, tls=s.mongo_tls) if args.save_to_mongo else None
    try:
        for name in _selected(args.analysis):
            analysis = get_analysis(name)
            sinks: list[ResultSink] = [JsonFileSink(s.output_dir)]
            if results_client is not None:
                db_name, _ = analysis.source(s)
                sinks.append(MongoSink(get_db(results_client, db_name)[args.save_to_mongo]))

            log.info("Running %s analysis", name)
            result = run_named(name, s, sinks)
            if not args.no_report:
                print(format_report(name, result))
    finally:
        if results_client is not None:
            results_client.close()


# --------------------------------------------------
# LIST
# --------------------------------------------------
def cmd_list(_: argparse.Namespace) -> None:
    """Describe the registered analyses."""
    for analysis in ANALYSES.values():
        print(f"{analysis.name}: {analysis.description}")
        print(f"  facets: {', '.join(analysis.facets)}")
        print(f"  output: {analysis.output_file}")


# --------------------------------------------------
# INFO
# --------------------------------------------------
def cmd_info(_: argparse.Namespace) -> None:
    """Show the configured source collections and their document counts."""
    s = get_settings()
    client = get_client(s.mongo_uri, tls=s.mongo_tls)
    try:
        rows = collection_info(client, s)
    finally:
        client.close()
    print(pd.DataFrame(rows).to_string(index=False))


# --------------------------------------------------
# CLI
# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser for the CLI.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    p = argparse.ArgumentParser(prog="analytics-pipeline")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="run analyses and write results")
    p_run.add_argument("analysis", choices=[*ANALYSES, "all"])
    p_run.add_argument("--output-dir", default=None)
    p_run.add_argument("--strict", action="store_true")
    p_run.add_argument("--no-report", action="store_true")
    p_run.add_argument("--save-to-mongo", metavar="COLLECTION", default=None)

    sub.add_parser("list", help="describe the available analyses")
    sub.add_parser("info", help="show source collections and document counts")

    return p


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse args, configure logging and dispatch commands."""
    load_dotenv()
    configure_logging(Path("logs/analytics.log"), level=level_from_env())

    args = build_parser().parse_args(argv)

    try:
        if args.cmd == "run":
            cmd_run(args)
        elif args.cmd == "list":
            cmd_list(args)
        elif args.cmd == "info":
            cmd_info(args)
        else:
            raise SystemExit(2)
    except PipelineError as e:
        log.error("%s: %s", e.kind, e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
