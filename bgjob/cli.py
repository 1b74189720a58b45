"""
Command-line entry point.

Submits a payload as a background job, prints its handle, then polls the
server once per interval and prints one progress line per status report
until the job completes or the server no longer knows it.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, BinaryIO, TextIO

from pydantic import ValidationError

from bgjob import __version__
from bgjob.client import JobQueueClient, create_client, parse_server
from bgjob.config import Settings, get_settings
from bgjob.constants import (
    DEFAULT_PRIORITY,
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    Backend,
    JobPriority,
)
from bgjob.errors import ConfigurationError, ServerConnectionError, SubmissionError
from bgjob.observability.logging import setup_logging
from bgjob.observability.metrics import setup_metrics
from bgjob.observability.tracing import setup_tracing, shutdown_tracing
from bgjob.poller import StatusPoller
from bgjob.submission import submit_background_job
from bgjob.types.job import ExitDisposition

logger = logging.getLogger(__name__)


class ArgumentParser(argparse.ArgumentParser):
    """Argument parser that raises instead of exiting on bad arguments."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigurationError(message)


def build_parser() -> ArgumentParser:
    """Build the command-line parser."""
    parser = ArgumentParser(
        prog="bgjob",
        description="Submit a background job and poll it until it finishes.",
    )
    parser.add_argument(
        "-H", "--host",
        action="append",
        dest="hosts",
        metavar="HOST[:PORT]",
        help="Job-queue server to connect to; may be repeated (default: localhost)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        help="Port for servers given without one (default: 4730, or 8000 for http)",
    )
    parser.add_argument(
        "-u", "--timeout",
        type=int,
        metavar="MS",
        help="Per-call timeout in milliseconds; negative keeps the client default",
    )
    parser.add_argument(
        "-f", "--function",
        help="Server-side function that processes the payload (default: reverse)",
    )
    parser.add_argument("--unique", help="Unique key for the submission")
    parser.add_argument(
        "--priority",
        type=JobPriority,
        choices=list(JobPriority),
        default=DEFAULT_PRIORITY,
        help="Queue priority (default: normal)",
    )
    parser.add_argument("--backend", type=Backend, choices=list(Backend))
    parser.add_argument(
        "--interval",
        type=float,
        metavar="SECONDS",
        help="Seconds between status polls (default: 1)",
    )
    parser.add_argument("--metrics-file", help="Write Prometheus metrics to this file at exit")
    parser.add_argument("--log-level", help="Log level for diagnostics on stderr")
    parser.add_argument("--text", help="Text to submit; read from stdin when omitted")
    parser.add_argument("words", nargs="*", help=argparse.SUPPRESS)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """
    Overlay command-line options on the environment settings.

    Raises:
        ConfigurationError: If the combined settings are invalid.
    """
    try:
        base = base or get_settings()
    except ValidationError as e:
        raise ConfigurationError(str(e)) from None

    overrides: dict[str, Any] = {
        "server_port": args.port,
        "server_timeout_ms": args.timeout,
        "submit_function": args.function,
        "backend": args.backend,
        "poll_interval_seconds": args.interval,
        "metrics_textfile": args.metrics_file,
        "log_level": args.log_level,
    }
    if args.hosts:
        overrides["server_host"] = ",".join(args.hosts)

    data = base.model_dump()
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from None


def read_payload(args: argparse.Namespace, stdin: BinaryIO) -> bytes:
    """
    Collect the payload from ``--text``, positional words or stdin.

    Raises:
        ConfigurationError: If no payload was provided.
    """
    if args.text:
        return args.text.encode("utf-8")
    if args.words:
        return " ".join(args.words).encode("utf-8")

    payload = stdin.read()
    if not payload:
        raise ConfigurationError("No text was provided for --text or via stdin")
    return payload


def register_servers(client: JobQueueClient, settings: Settings) -> None:
    """
    Register every configured server and apply the timeout.

    Raises:
        ServerConnectionError: If a server address is invalid.
    """
    for entry in settings.server_host.split(","):
        if not entry.strip():
            continue
        address = parse_server(entry, settings.default_port)
        client.add_server(address.host, address.port)
    if not client.servers:
        raise ServerConnectionError("No job-queue server configured")
    client.set_timeout(settings.server_timeout_ms)


async def run_job(
    client: JobQueueClient,
    settings: Settings,
    payload: bytes,
    *,
    unique: str | None = None,
    priority: JobPriority = DEFAULT_PRIORITY,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """
    Submit the payload and poll the resulting job.

    Returns:
        Process exit code.
    """
    out = out or sys.stdout
    err = err or sys.stderr

    try:
        handle = await submit_background_job(
            client,
            settings.submit_function,
            payload,
            unique=unique,
            priority=priority,
        )
    except SubmissionError as e:
        print(f"Failed to process job ({e})", file=err)
        return EXIT_FAILURE

    print(f"Background Job Handle={handle}", file=out, flush=True)

    disposition = ExitDisposition()
    poller = StatusPoller(
        client,
        handle,
        interval=settings.poll_interval_seconds,
        on_progress=lambda report: print(report.describe(), file=out, flush=True),
        on_error=lambda error: print(error, file=err, flush=True),
        disposition=disposition,
    )
    await poller.run()

    for reason in disposition.reasons:
        logger.info("Run marked as failed", extra={"reason": reason})

    return EXIT_SUCCESS if disposition.success else EXIT_FAILURE


async def run_async(
    settings: Settings,
    payload: bytes,
    *,
    unique: str | None = None,
    priority: JobPriority = DEFAULT_PRIORITY,
) -> int:
    """Run one submit-and-poll cycle with signal-driven cancellation."""
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()

    # Cancel the run on SIGTERM/SIGINT so the client session is released
    signals = (signal.SIGTERM, signal.SIGINT)
    for sig in signals:
        loop.add_signal_handler(sig, task.cancel)

    try:
        async with create_client(settings) as client:
            register_servers(client, settings)
            return await run_job(
                client,
                settings,
                payload,
                unique=unique,
                priority=priority,
            )
    except asyncio.CancelledError:
        logger.info("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> int:
    """Run the command-line client and return the process exit code."""
    parser = build_parser()

    try:
        args = parser.parse_args(argv)
        settings = settings_from_args(args)
        payload = read_payload(args, sys.stdin.buffer)
    except SystemExit as e:
        # --help and --version
        return e.code if isinstance(e.code, int) else EXIT_SUCCESS
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        print(parser.format_usage(), file=sys.stderr, end="")
        return EXIT_FAILURE

    setup_logging(settings)
    setup_tracing(settings)
    metrics = setup_metrics()

    try:
        return asyncio.run(
            run_async(settings, payload, unique=args.unique, priority=args.priority)
        )
    except (ConfigurationError, ServerConnectionError) as e:
        print(e, file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        if settings.metrics_textfile:
            metrics.write_textfile(settings.metrics_textfile)
        shutdown_tracing()


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
