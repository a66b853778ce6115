"""jobtrace command line."""

import argparse
import logging
import os
import sys
from pathlib import Path

from jobtrace.config import DATA_DIR_ENV, Config, load_config
from jobtrace.tracer import ProcessTracer, StatsCollector

logger = logging.getLogger("jobtrace")

LOG_FORMAT = "[jobtrace] %(levelname)s %(name)s: %(message)s"


def run_start(config: Config) -> int:
    logger.info("Initializing ...")
    StatsCollector(config).start()
    ProcessTracer(config).start()
    logger.info("Initialization completed")
    return 0


def build_report(config: Config, job_name: str | None = None) -> str:
    """Stop both workers, then read everything they saved."""
    stats = StatsCollector(config)
    processes = ProcessTracer(config)

    # Flush happens-before load: both finishes return after the final save
    stats.finish()
    processes.finish()

    sections = [stats.report(job_name), processes.report(job_name)]
    return "".join(section + "\n" for section in sections if section)


def write_report(config: Config, content: str, output: Path | None) -> None:
    job_name = config.report.job_name
    post_content = f"## Workflow Telemetry - {job_name}\n{content}"

    if output is not None:
        output.write_text(post_content, encoding="utf-8")
        logger.info("Report written to %s", output)
        return

    summary_path = os.environ.get("GITHUB_STEP_SUMMARY")
    if config.report.job_summary and summary_path:
        with open(summary_path, "a", encoding="utf-8") as fh:
            fh.write(post_content + "\n")
        logger.info("Report appended to job summary")
        return

    sys.stdout.write(post_content + "\n")


def run_finish(config: Config, output: Path | None = None) -> int:
    logger.info("Finishing ...")
    try:
        content = build_report(config)
        write_report(config, content, output)
    except OSError:
        logger.exception("Unable to write report")
    logger.info("Finish completed")
    return 0


def run_view(config: Config) -> int:
    from jobtrace.app import JobtraceApp

    JobtraceApp(config).run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobtrace", description="CI job telemetry collector")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--data-dir", type=Path, help="directory for collected data")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="start background sampling")
    finish = subparsers.add_parser("finish", help="stop sampling and write the report")
    finish.add_argument("-o", "--output", type=Path, help="write the Markdown report to this file")
    subparsers.add_parser("view", help="browse collected data in the terminal")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    env = dict(os.environ)
    if args.data_dir is not None:
        env[DATA_DIR_ENV] = str(args.data_dir)
    config = load_config(env)

    if args.command == "start":
        return run_start(config)
    if args.command == "finish":
        return run_finish(config, args.output)
    return run_view(config)


if __name__ == "__main__":
    sys.exit(main())
