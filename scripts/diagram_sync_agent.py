"""Command line entrypoint for diagram cloud sync."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from aiohttp import ClientSession

from diagram_cloudsync import (
    CloudAuthClient,
    CloudConfig,
    CloudRestClient,
    CloudSyncManager,
    Diagram,
    DiagramSyncWorker,
    HistoryLocation,
    JsonFileSessionStorage,
    PathDocumentCache,
    SessionManager,
    SyncState,
)

_LOGGER = logging.getLogger(__name__)

SESSION_FILE = "session.json"
CACHE_DIR = "diagrams"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync diagrams with the cloud backend")
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=Path(".diagram-sync"),
        help="Directory holding the session file and the local diagram cache",
    )
    parser.add_argument("--url", help="Backend base URL (defaults to DIAGRAM_CLOUD_URL)")
    parser.add_argument("--anon-key", help="Public API key (defaults to DIAGRAM_CLOUD_ANON_KEY)")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    send = sub.add_parser("send-link", help="E-mail a magic sign-in link")
    send.add_argument("email")

    complete = sub.add_parser("complete", help="Finish sign-in from the magic link callback URL")
    complete.add_argument("callback_url")

    sub.add_parser("status", help="Show the current session")

    push = sub.add_parser("push", help="Upload a diagram JSON file once")
    push.add_argument("file", type=Path)

    watch = sub.add_parser("watch", help="Upload a diagram JSON file whenever it changes")
    watch.add_argument("file", type=Path)
    watch.add_argument("--interval", type=float, default=1.0, help="Poll interval in seconds")

    sub.add_parser("pull", help="Download every remote diagram into the local cache")

    delete = sub.add_parser("delete", help="Remove a diagram from the cloud")
    delete.add_argument("diagram_id")

    sub.add_parser("sign-out", help="Forget the session and the local cache")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CloudConfig:
    config = CloudConfig.from_env()
    if args.url:
        config = replace(config, url=args.url.strip().rstrip("/"))
    if args.anon_key:
        config = replace(config, anon_key=args.anon_key.strip())
    return config


def load_diagram(path: Path) -> Diagram:
    with path.open("r", encoding="utf-8") as handle:
        return Diagram.from_dict(json.load(handle))


def _print_state(state: SyncState) -> None:
    suffix = f": {state.error}" if state.error else ""
    print(f"[{state.label}]{suffix}")


async def _async_push(manager: CloudSyncManager, path: Path) -> int:
    manager.update_diagram(load_diagram(path))
    await manager.async_trigger_sync()
    await manager.async_stop()
    return 1 if manager.error else 0


async def _async_watch(manager: CloudSyncManager, path: Path, interval: float) -> int:
    manager.register_listener(_print_state)
    last_mtime: float | None = None
    _LOGGER.info("Watching %s", path)
    try:
        while True:
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                mtime = None
            if mtime is not None and mtime != last_mtime:
                last_mtime = mtime
                try:
                    manager.update_diagram(load_diagram(path))
                except (OSError, ValueError) as err:
                    _LOGGER.warning("Skipping unreadable diagram %s: %s", path, err)
            await asyncio.sleep(interval)
    finally:
        await manager.async_stop()


async def _async_pull(manager: CloudSyncManager, cache_dir: Path) -> int:
    diagrams = await manager.async_fetch_diagrams()
    status = manager.status()
    if status["last_fetch_error"]:
        print(status["last_fetch_error"], file=sys.stderr)
        return 1
    cache_dir.mkdir(parents=True, exist_ok=True)
    for diagram in diagrams:
        target = cache_dir / f"{diagram.id}.json"
        target.write_text(json.dumps(diagram.to_dict(), indent=2), encoding="utf-8")
        print(f"{diagram.id}\t{diagram.name}")
    return 0


async def main_async(args: argparse.Namespace) -> int:
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    config = build_config(args)
    state_dir: Path = args.state_dir
    cache_dir = state_dir / CACHE_DIR
    location = HistoryLocation(args.callback_url) if args.command == "complete" else None

    async with ClientSession() as http:
        sessions = SessionManager(
            config,
            JsonFileSessionStorage(state_dir / SESSION_FILE),
            client=CloudAuthClient(config, http),
            document_cache=PathDocumentCache(cache_dir),
            location=location,
        )
        try:
            if args.command == "send-link":
                result = await sessions.async_sign_in_with_otp(args.email)
                if result["error"]:
                    print(result["error"], file=sys.stderr)
                    return 1
                print(f"Magic link sent to {args.email}")
                return 0

            await sessions.async_initialize()
            if args.command == "complete":
                if not sessions.is_authenticated:
                    print("Callback URL did not contain a usable session", file=sys.stderr)
                    return 1
                print(f"Signed in as {sessions.user.email or sessions.user.id}")
                return 0
            if args.command == "status":
                user = sessions.user
                print(f"configured: {config.configured}")
                print(f"signed in: {user.email or user.id if user else 'no'}")
                return 0
            if args.command == "sign-out":
                await sessions.async_sign_out()
                print("Signed out")
                return 0

            if not sessions.is_authenticated:
                print("Not signed in", file=sys.stderr)
                return 1
            manager = CloudSyncManager(sessions, DiagramSyncWorker(CloudRestClient(config, http)))
            if args.command == "push":
                return await _async_push(manager, args.file)
            if args.command == "watch":
                return await _async_watch(manager, args.file, args.interval)
            if args.command == "pull":
                return await _async_pull(manager, cache_dir)
            if args.command == "delete":
                deleted = await manager.async_delete_diagram(args.diagram_id)
                await manager.async_stop()
                return 0 if deleted else 1
            raise ValueError(f"unknown command: {args.command}")
        finally:
            await sessions.async_close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        code = asyncio.run(main_async(args))
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        _LOGGER.info("Sync agent stopped")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
