"""Command line helpers for checking a gRPC request configuration."""

from __future__ import annotations

import logging
import sys
import time

import click

from .config import load_config
from .exceptions import LabenchError, TransportError
from .logger import configure as configure_logger, setup_console

LOGGER = configure_logger("labench_grpc.cli")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Inspect and exercise labench gRPC requests."""
    setup_console(logging.DEBUG if verbose else logging.INFO)


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def describe(config_path: str) -> None:
    """Resolve the configured method and print its payloads."""
    try:
        with load_config(config_path).to_factory() as factory:
            method = factory.method()
            payloads = factory.payloads()
    except LabenchError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"method:   {method.path}")
    click.echo(f"request:  {method.input.full_name}")
    click.echo(f"response: {method.output.full_name}")
    for index, payload in enumerate(payloads):
        click.echo(f"payload[{index}] ({len(payload.data)} bytes):")
        click.echo(payload.to_json())


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--count", "-n", default=1, show_default=True, type=click.IntRange(min=1))
@click.option("--timeout", type=float, default=None, help="Per-call timeout in seconds")
def probe(config_path: str, count: int, timeout: float | None) -> None:
    """Issue COUNT sequential calls through a single requester."""
    failures = 0
    try:
        with load_config(config_path).to_factory() as factory:
            requester = factory.get_requester(0)
            requester.setup(timeout=timeout)
            for attempt in range(count):
                start = time.perf_counter()
                try:
                    requester.request()
                except TransportError as exc:
                    failures += 1
                    LOGGER.warning("call %s failed: %s", attempt, exc)
                    continue
                LOGGER.info("call %s ok in %.2fms", attempt, (time.perf_counter() - start) * 1000)
            requester.teardown()
    except LabenchError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"{count - failures}/{count} calls succeeded")
    if failures:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
