"""
Console runner for a voice session.

Connects with the configured context, prints transcripts and responses,
and reads typed lines from stdin:

    <text>        send a typed message into the conversation
    /interrupt    cancel the agent's current response
    /quit         disconnect and exit

Usage:
    python -m vivid_voice.main [--config PATH] [--context dashboard] [--user USER_ID]
"""

import argparse
import asyncio
import os
import signal
import sys

import structlog
from prometheus_client import start_http_server

from vivid_voice.config import load_config
from vivid_voice.core.errors import VoiceSessionError
from vivid_voice.core.signals import (
    ConnectionChanged,
    ErrorSignal,
    FetchingChanged,
    ResponseSignal,
    Signal,
    TranscriptSignal,
)
from vivid_voice.logging_config import configure_logging
from vivid_voice.session.manager import RealtimeVoiceSession

logger = structlog.get_logger(__name__)


def _print_signal(signal_: Signal) -> None:
    if isinstance(signal_, TranscriptSignal) and signal_.is_final:
        print(f"you> {signal_.text}")
    elif isinstance(signal_, ResponseSignal) and signal_.is_final:
        print(f"agent> {signal_.text}")
    elif isinstance(signal_, FetchingChanged) and signal_.fetching:
        print(f"... fetching ({signal_.tool_name})")
    elif isinstance(signal_, ConnectionChanged):
        print("[connected]" if signal_.connected else "[disconnected]")
    elif isinstance(signal_, ErrorSignal):
        print(f"[{signal_.kind} error] {signal_.message}", file=sys.stderr)


async def _read_commands(session: RealtimeVoiceSession, stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    while not stop.is_set():
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        if line == "/quit":
            break
        if line == "/interrupt":
            await session.interrupt()
        else:
            await session.send_text(line)
    stop.set()


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Realtime voice session")
    parser.add_argument("--config", default=None, help="Defaults to $VIVID_CONFIG, then config/vivid-voice.yaml")
    parser.add_argument("--context", default=None)
    parser.add_argument("--user", default=None, help="Identity used for portfolio tools")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    configure_logging(log_level=config.logging.level, log_format=config.logging.format)

    metrics_port = os.getenv("VIVID_METRICS_PORT")
    if metrics_port:
        start_http_server(int(metrics_port))
        logger.info("Metrics endpoint started", port=int(metrics_port))

    session = RealtimeVoiceSession.from_config(config)
    session.bus.subscribe(_print_signal)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    # A fatal transport error ends the run; there is no automatic reconnect
    def _on_connection(signal_: ConnectionChanged) -> None:
        if not signal_.connected:
            stop.set()

    session.bus.subscribe(_on_connection, ConnectionChanged)

    try:
        await session.connect(context=args.context, identity=args.user)
    except VoiceSessionError as exc:
        logger.error("Could not start voice session", kind=exc.kind, error=str(exc))
        await session.aclose()
        return 1

    commands = asyncio.create_task(_read_commands(session, stop))
    await stop.wait()
    commands.cancel()
    await session.aclose()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        logger.info("Vivid voice has shut down.")
