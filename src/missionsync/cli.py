"""missionsync command line.

Subcommands:
  fetch             -> replace a note's Issues section with the remote list
  push              -> push every issue in a note to the tracker
  create-milestone  -> create/link the milestone a note describes
  create-project    -> create/link the project a note describes
  sync              -> run one reconciliation pass over a note
  watch             -> reconcile vault notes as they change
  show              -> print a note's parsed snapshot as JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

from .config import CONFIG_DEFAULT, SyncConfig
from .context import SyncContext
from .errors import ConfigurationError
from .logging import configure_logging
from .note import NoteSnapshot
from .reconcile import Reconciler
from .runtime import execute_command, prepare_config
from .storage import VaultStorage
from .ux import print_info, print_success, print_summary_box

T = TypeVar("T")

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="missionsync", description="Keep markdown notes in sync with GitHub issues"
    )
    p.add_argument("--config", default=CONFIG_DEFAULT, help="Path to missionsync config")
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational output (env: MISSIONSYNC_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )
    for name, help_text in (
        ("fetch", "Replace the note's Issues section with the remote issues"),
        ("push", "Push every issue listed in the note to the tracker"),
        ("create-milestone", "Create or link the milestone described by the note"),
        ("create-project", "Create or link the project described by the note"),
        ("sync", "Run one reconciliation pass over the note"),
        ("show", "Print the parsed note as JSON"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("note", help="Path to the markdown note")
    sub.add_parser("watch", help="Reconcile notes in the vault as they change")
    return p


def _note_path(cfg: SyncConfig, note: str) -> str:
    root = cfg.root.resolve()
    try:
        return Path(note).resolve().relative_to(root).as_posix()
    except ValueError as exc:
        raise ConfigurationError(f"{note} is not inside the vault {root}") from exc


def _run(cfg: SyncConfig, action: Callable[[Reconciler], Awaitable[T]]) -> T:
    async def _main() -> T:
        with SyncContext.open(cfg) as context:
            storage = VaultStorage(cfg.root, ignored_dirs=cfg.ignored_dirs)
            return await action(Reconciler(context, storage))

    return asyncio.run(_main())


def _cmd_fetch(cfg: SyncConfig, args: argparse.Namespace) -> int:
    path = _note_path(cfg, args.note)
    issues = _run(cfg, lambda r: r.fetch_issues(path))
    print_success(f"Fetched {len(issues)} issues into {path}")
    return 0


def _cmd_push(cfg: SyncConfig, args: argparse.Namespace) -> int:
    path = _note_path(cfg, args.note)
    count = _run(cfg, lambda r: r.push_issues(path))
    print_success(f"Pushed {count} issues from {path}")
    return 0


def _cmd_create(cfg: SyncConfig, args: argparse.Namespace, kind: str) -> int:
    path = _note_path(cfg, args.note)
    entity = _run(cfg, lambda r: r.create_tracked(path, kind))
    print_success(f"{path} now tracks {kind} {entity.id}")
    return 0


def _cmd_sync(cfg: SyncConfig, args: argparse.Namespace) -> int:
    path = _note_path(cfg, args.note)
    result = _run(cfg, lambda r: r.reconcile_note(path))
    if result.outcome == "baseline":
        print_info(f"Recorded baseline for {path}; later edits will be synced")
    else:
        print_summary_box("Sync Summary", result.summary())
    return 0


def _cmd_watch(cfg: SyncConfig) -> int:
    print_info(f"Watching {cfg.root} (Ctrl+C to stop)")
    try:
        _run(cfg, lambda r: r.watch())
    except KeyboardInterrupt:
        print_info("Stopped watching")
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    note = Path(args.note)
    if not note.exists():
        raise ConfigurationError(f"Note not found: {note}")
    snapshot = NoteSnapshot.parse(note.as_posix(), note.read_text(encoding="utf-8"))
    print(json.dumps(snapshot.to_dict(), indent=2))
    return 0


def _build_handlers(args: argparse.Namespace, cfg: SyncConfig) -> dict[str, Callable[[], int]]:
    return {
        "fetch": lambda: _cmd_fetch(cfg, args),
        "push": lambda: _cmd_push(cfg, args),
        "create-milestone": lambda: _cmd_create(cfg, args, "milestone"),
        "create-project": lambda: _cmd_create(cfg, args, "project"),
        "sync": lambda: _cmd_sync(cfg, args),
        "watch": lambda: _cmd_watch(cfg),
        "show": lambda: _cmd_show(args),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.quiet:
        os.environ["MISSIONSYNC_QUIET"] = "1"

    def _handler() -> int:
        cfg = prepare_config(args)
        level = "WARNING" if args.quiet else cfg.logging_level
        configure_logging(json_logging=cfg.logging_json_enabled, level=level)
        handler = _build_handlers(args, cfg)[args.cmd]
        return handler()

    return execute_command(_handler, args, args.cmd)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
