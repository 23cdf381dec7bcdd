#!/usr/bin/env python3

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from journalsync.config import JournalSyncConfig, RelayConfig
from journalsync.errors import IdentityUnavailable, JournalSyncError, RelayUploadError
from journalsync.services.engine import SyncEngine

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> JournalSyncConfig:
    config = JournalSyncConfig.from_env(env_path=Path(args.env_file) if args.env_file else None)
    return config.with_overrides(
        data_dir=Path(args.data_dir).expanduser() if args.data_dir else None,
        device_name=args.name,
        relay=RelayConfig.from_uri(args.redis_uri) if args.redis_uri else None,
        network_port=args.port,
        direct_enabled=False if args.no_direct else None,
    )


async def cmd_code(engine: SyncEngine, args: argparse.Namespace) -> int:
    print(engine.pairing_code())
    return 0


async def cmd_pair(engine: SyncEngine, args: argparse.Namespace) -> int:
    code = args.code
    if code == "-":
        code = sys.stdin.read()
    device = await engine.accept_pairing(code)
    print(f"Paired with {device.display_name} ({device.id})")
    return 0


async def cmd_devices(engine: SyncEngine, args: argparse.Namespace) -> int:
    devices = engine.get_paired_devices()
    if not devices:
        print("No paired devices")
        return 0
    for device in devices:
        last_sync = device.last_sync_at or "never"
        print(f"{device.id}  {device.display_name}  paired {device.paired_at}  last sync {last_sync}")
    return 0


async def cmd_sync(engine: SyncEngine, args: argparse.Namespace) -> int:
    bidirectional = False if args.one_way else None
    if args.peer:
        result = await engine.sync_with_device(args.peer, bidirectional=bidirectional)
        print(f"Sent {result.records} records to {result.peer_id} via {result.transport}")
        return 0

    results = await engine.sync_all(bidirectional=bidirectional)
    failures = 0
    for peer_id, outcome in results.items():
        if isinstance(outcome, JournalSyncError):
            failures += 1
            print(f"{peer_id}: failed ({outcome})")
        else:
            print(f"{peer_id}: sent {outcome.records} records via {outcome.transport}")
    return 1 if failures else 0


def install_signal_handlers(loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event,
                            engine: SyncEngine) -> None:
    """Stop on SIGINT/SIGTERM and resume on SIGHUP where the platform has it."""
    try:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)
    except NotImplementedError:
        # Windows event loops have no add_signal_handler
        def signal_handler(signum, frame):
            loop.call_soon_threadsafe(stop_event.set)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
        return

    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, lambda: asyncio.ensure_future(engine.resume()))


async def cmd_run(engine: SyncEngine, args: argparse.Namespace) -> int:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    install_signal_handlers(loop, stop_event, engine)

    events = engine.events.subscribe()
    await engine.start()
    print(f"journalsync running as {engine.device_name} ({engine.device_id}). Press Ctrl+C to stop")

    try:
        while not stop_event.is_set():
            try:
                event = await asyncio.wait_for(events.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            logger.info(f"{event.kind.value}: {event.peer_id} {event.detail}")
    finally:
        engine.events.unsubscribe(events)
    return 0


COMMANDS = {
    "code": cmd_code,
    "pair": cmd_pair,
    "devices": cmd_devices,
    "sync": cmd_sync,
    "run": cmd_run,
}


async def run_command(args: argparse.Namespace) -> int:
    engine = SyncEngine(build_config(args))
    try:
        return await COMMANDS[args.command](engine, args)
    finally:
        if engine.running:
            await engine.stop()
        else:
            await engine.relay_store.close()


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="journalsync - pair devices and sync journal data between them"
    )

    parser.add_argument("--data-dir", type=str, default=None,
                        help="Directory for identity, pairings and records (default: ~/.journalsync)")
    parser.add_argument("-n", "--name", type=str, default=None,
                        help="Device name (default: hostname)")
    parser.add_argument("-p", "--port", type=int, default=None,
                        help="Direct channel signaling port (default: 9999)")
    parser.add_argument("--redis-uri", type=str, default=None,
                        help="Relay store URI, e.g. redis://localhost:6379/0")
    parser.add_argument("--env-file", type=str, default=None,
                        help="Load settings from this .env file")
    parser.add_argument("--no-direct", action="store_true",
                        help="Disable direct peer channels; use the relay only")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("code", help="Print this device's pairing code")

    pair = sub.add_parser("pair", help="Pair with the device that produced CODE")
    pair.add_argument("code", help="Pairing code JSON, or - to read it from stdin")

    sub.add_parser("devices", help="List paired devices")

    sync = sub.add_parser("sync", help="Send this device's data to paired devices")
    sync.add_argument("peer", nargs="?", default=None, help="Device id (default: all paired devices)")
    sync.add_argument("--one-way", action="store_true",
                      help="Do not ask the peer to send its data back")

    sub.add_parser("run", help="Listen for pairings and sync traffic until interrupted")

    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s: %(message)s')

    try:
        return asyncio.run(run_command(args))
    except IdentityUnavailable as e:
        logger.error(f"Fatal error: {e}")
        return 2
    except RelayUploadError as e:
        logger.error(f"Relay error ({e.reason}): {e}")
        return 1
    except JournalSyncError as e:
        logger.error(str(e))
        return 1
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
