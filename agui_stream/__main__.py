"""Command line interface for tailing an AG-UI event stream."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .buffer import bind_message_aggregation
from .config import StreamConfig, load_stream_config
from .state import StateStore, bind_state_store
from .stream import EventStream
from .types import BaseEvent, ConnectionStatus, TextMessageContentEvent


cli = typer.Typer(help="AG-UI event stream commands.")


def _parse_headers(values: List[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Header must look like 'Name: value', got {value!r}")
        headers[name.strip()] = content.strip()
    return headers


def _describe(event: BaseEvent) -> str:
    payload = {k: v for k, v in (event.raw_data or {}).items() if k not in ("type", "timestamp")}
    return f"[{event.sequence}] {event.type.value} {json.dumps(payload, default=str)}"


async def _tail(config: StreamConfig, show_state: bool, text_only: bool) -> None:
    stream = EventStream(config)
    store = StateStore()
    bind_state_store(stream, store)
    if text_only:
        # Terminate each streamed message with a newline
        bind_message_aggregation(stream, on_message_complete=lambda message_id, text: typer.echo(""))
    if show_state:
        store.subscribe(lambda state: typer.echo(f"state[{state.status}] {json.dumps(state.custom_state, default=str)}"))

    stream.on_status_change(lambda status: typer.echo(f"-- {status.value}", err=True))
    stream.on_error(lambda error, context: typer.echo(f"-- error: {error}", err=True))

    async for event in stream.events():
        if text_only:
            if isinstance(event, TextMessageContentEvent):
                typer.echo(event.delta, nl=False)
        else:
            typer.echo(_describe(event))

    if stream.status == ConnectionStatus.ERROR:
        raise typer.Exit(code=1)


@cli.command()
def tail(
    url: Optional[str] = typer.Argument(None, help="SSE endpoint URL (overrides the config file)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML stream config file."),
    header: List[str] = typer.Option([], "--header", "-H", help="Extra request header, 'Name: value'."),
    no_reconnect: bool = typer.Option(False, "--no-reconnect", help="Stop when the stream drops."),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Reconnect attempt budget."),
    show_state: bool = typer.Option(False, "--state", help="Print the session state after each change."),
    text_only: bool = typer.Option(False, "--text", help="Print only streamed message text."),
    log_level: str = typer.Option("warning", "--log-level", help="Python log level."),
) -> None:
    """Connect to URL and print decoded events until interrupted."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, object] = {"url": url, "max_reconnect_attempts": max_attempts}
    if no_reconnect:
        overrides["auto_reconnect"] = False
    headers = _parse_headers(header)

    if config_path is not None:
        config = load_stream_config(config_path, **overrides)
    elif url:
        config = StreamConfig.model_validate({k: v for k, v in overrides.items() if v is not None})
    else:
        raise typer.BadParameter("Provide a URL or --config")

    if headers:
        config = config.model_copy(update={"headers": {**config.headers, **headers}})

    try:
        asyncio.run(_tail(config, show_state, text_only))
    except KeyboardInterrupt:
        typer.echo("", err=True)


def main() -> None:
    """Entrypoint executed via ``python -m agui_stream``."""
    cli()


if __name__ == "__main__":
    main()
