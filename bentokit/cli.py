"""
Command-line interface for the bento profile kit.

Notes
-----
The CLI is intentionally thin. It parses arguments, opens the session adapter
once and delegates to engine modules.

Exit codes
----------
- 0: success
- 1: the operation ran but storage rejected it (failure result)
- 2: invalid input or a domain error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Awaitable, Callable

from bento_engine.data_models import GridRect, ItemPatch, ItemRequest, ItemType, LayoutMode
from bento_engine.errors import BentoError
from bento_engine.grid.results import OperationResult
from bento_engine.grid.solver import ViewportHint
from bento_engine.grid.state_store import GridStateStore
from bento_engine.persistence.factory import (
    RequestedMode,
    SessionAdapter,
    open_session_adapter,
    resolve_session_mode,
    seed_live_from_snapshot,
)
from bento_engine.persistence.snapshot_adapter import SnapshotAdapter
from bento_engine.persistence.snapshot_io import read_snapshot, write_snapshot_atomic
from bento_engine.persistence.sqlite_store import open_live_adapter
from bento_engine.publish.github_client import GitHubClient, parse_repository
from bento_engine.publish.service import PublishOptions, PublishPipeline, PublishStatus
from bento_engine.settings import (
    EngineSettings,
    apply_environment,
    github_token_from_env,
    load_settings,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--data-root",
        default=None,
        help="Override the data root (primarily for testing). If omitted, defaults are used.",
    )
    common.add_argument("--site-prefix", default=None, help="Storage namespace of the site.")
    common.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    session = argparse.ArgumentParser(add_help=False)
    session.add_argument(
        "--session",
        choices=[m.value for m in RequestedMode],
        default=None,
        help="Requested mode: 'edit' or 'preview'. Defaults from settings.",
    )
    session.add_argument("--snapshot", default=None, help="Path or URL of the published snapshot.")

    parser = argparse.ArgumentParser(
        prog="bentokit",
        description="Bento profile grid and publishing tool",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("items", parents=[common, session], help="List grid items")

    add_p = sub.add_parser("add", parents=[common, session], help="Add a card to the grid")
    add_p.add_argument("--type", required=True, choices=[t.value for t in ItemType])
    add_p.add_argument("--content", default="{}", help="Card content as a JSON object.")
    add_p.add_argument("--w", type=int, default=None, help="Width in cells (default per type).")
    add_p.add_argument("--h", type=int, default=None, help="Height in cells (default per type).")
    add_p.add_argument(
        "--mode", choices=[m.value for m in LayoutMode], default=LayoutMode.WIDE.value
    )
    add_p.add_argument("--scroll-px", type=float, default=None, help="Page scroll offset.")
    add_p.add_argument("--viewport-px", type=float, default=None, help="Visible height.")

    update_p = sub.add_parser("update", parents=[common, session], help="Update a card")
    update_p.add_argument("item_id")
    update_p.add_argument("--patch", required=True, help="Patch as a JSON object.")
    update_p.add_argument(
        "--mode", choices=[m.value for m in LayoutMode], default=LayoutMode.WIDE.value
    )

    delete_p = sub.add_parser("delete", parents=[common, session], help="Delete a card")
    delete_p.add_argument("item_id")

    layout_p = sub.add_parser("layout", parents=[common, session], help="Commit a settled layout")
    layout_p.add_argument("--mode", choices=[m.value for m in LayoutMode], required=True)
    layout_p.add_argument(
        "--positions", required=True, help='JSON object: {"id": {"x":..,"y":..,"w":..,"h":..}}'
    )

    profile_p = sub.add_parser("profile", parents=[common, session], help="Show or edit the profile")
    profile_p.add_argument("--set", dest="patch", default=None, help="Profile patch as JSON.")

    export_p = sub.add_parser("export", parents=[common, session], help="Export a snapshot")
    export_p.add_argument("--out", required=True, type=Path)

    import_p = sub.add_parser("import", parents=[common], help="Replace the live store with a snapshot")
    import_p.add_argument("--in", dest="source", required=True, help="Snapshot path or URL.")

    seed_p = sub.add_parser("seed", parents=[common], help="Seed the live store from a snapshot")
    seed_p.add_argument("--snapshot", required=True, help="Snapshot path or URL.")

    for name, help_text in (
        ("validate", "Check the publish token and repository"),
        ("publish", "Publish the live store to GitHub Pages"),
        ("history", "List recent publishes"),
    ):
        pub_p = sub.add_parser(name, parents=[common], help=help_text)
        pub_p.add_argument("--repo", default=None, help="owner/repo or a GitHub URL.")
        pub_p.add_argument("--branch", default=None, help="Target branch (default: main).")
        pub_p.add_argument(
            "--token", default=None, help="GitHub token (default: $BENTO_GITHUB_TOKEN)."
        )
        if name == "publish":
            pub_p.add_argument(
                "--no-wait", action="store_true", help="Do not wait for the Pages deployment."
            )
        if name == "history":
            pub_p.add_argument("--limit", type=int, default=10)

    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_json_object(text: str, *, what: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{what} is not valid JSON: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a JSON object")
    return value


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


def _settings_for(args: argparse.Namespace) -> EngineSettings:
    settings = apply_environment(load_settings(data_root=args.data_root))
    if args.site_prefix:
        settings = replace(settings, site_prefix=args.site_prefix)
    return settings


def _open_session(args: argparse.Namespace, settings: EngineSettings) -> SessionAdapter:
    mode = resolve_session_mode(settings.published_build, getattr(args, "session", None))
    return open_session_adapter(
        mode,
        site_prefix=settings.site_prefix,
        data_root=args.data_root,
        snapshot_source=getattr(args, "snapshot", None) or settings.snapshot_source,
    )


def _run_store(
    session: SessionAdapter,
    settings: EngineSettings,
    mode: LayoutMode,
    action: Callable[[GridStateStore], Awaitable[OperationResult[Any]]],
) -> OperationResult[Any]:
    async def _main() -> OperationResult[Any]:
        store = GridStateStore(session.adapter, mode=mode, tuning=settings.tuning)
        loaded = await store.load()
        if not loaded.ok:
            return loaded
        result = await action(store)
        await store.drain()
        return result

    return asyncio.run(_main())


def _report(result: OperationResult[Any]) -> int:
    if result.ok:
        _print_json(result.to_dict())
        return 0
    print(f"ERROR: {result.message}")
    return 1


def _require_editable(session: SessionAdapter) -> None:
    if session.adapter.read_only:
        raise BentoError(f"The {session.mode.value} session is read-only.")


def _publish_client(args: argparse.Namespace, settings: EngineSettings) -> GitHubClient:
    repo_text = args.repo or settings.publish_repository
    if not repo_text:
        raise ValueError("No repository given. Use --repo or set publish_repository in settings.")
    token = args.token or github_token_from_env()
    if not token:
        raise ValueError("No GitHub token given. Use --token or set BENTO_GITHUB_TOKEN.")
    return GitHubClient(
        ref=parse_repository(repo_text),
        token=token,
        branch=args.branch or settings.publish_branch or "main",
    )


def _print_status(status: PublishStatus) -> None:
    details = f" ({status.details})" if status.details else ""
    print(f"[{status.step.value:>10}] {status.progress:5.1f}% {status.message}{details}")


def _dispatch(args: argparse.Namespace) -> int:
    settings = _settings_for(args)

    if args.command in {"items", "add", "update", "delete", "layout", "profile", "export"}:
        session = _open_session(args, settings)
        if session.seed_outcome is not None:
            logger.info("Session seed: %s", session.seed_outcome.value)

        if args.command == "items":
            _print_json([item.to_dict() for item in session.adapter.get_items()])
            return 0

        if args.command == "export":
            write_snapshot_atomic(args.out, session.adapter.export_config())
            print(f"Wrote {args.out}")
            return 0

        if args.command == "profile":
            if args.patch is not None:
                _require_editable(session)
                session.adapter.update_profile(_load_json_object(args.patch, what="--set"))
            profile = session.adapter.get_profile()
            _print_json(None if profile is None else profile.to_dict())
            return 0

        _require_editable(session)

        if args.command == "add":
            request = ItemRequest(
                type=ItemType(args.type),
                content=_load_json_object(args.content, what="--content"),
                w=args.w,
                h=args.h,
            )
            viewport = None
            if args.scroll_px is not None and args.viewport_px is not None:
                viewport = ViewportHint.from_pixels(args.scroll_px, args.viewport_px, settings.tuning)
            return _report(
                _run_store(
                    session,
                    settings,
                    LayoutMode(args.mode),
                    lambda store: store.add_item(request, viewport=viewport),
                )
            )

        if args.command == "update":
            patch = ItemPatch.from_dict(_load_json_object(args.patch, what="--patch"))
            return _report(
                _run_store(
                    session,
                    settings,
                    LayoutMode(args.mode),
                    lambda store: store.update_item(args.item_id, patch),
                )
            )

        if args.command == "delete":
            return _report(
                _run_store(
                    session, settings, LayoutMode.WIDE, lambda store: store.delete_item(args.item_id)
                )
            )

        if args.command == "layout":
            raw = _load_json_object(args.positions, what="--positions")
            positions = {key: GridRect.from_dict(value) for key, value in raw.items()}
            mode = LayoutMode(args.mode)
            return _report(
                _run_store(
                    session, settings, mode, lambda store: store.commit_layout(positions, mode)
                )
            )

    if args.command == "import":
        live = open_live_adapter(settings.site_prefix, args.data_root)
        config = read_snapshot(args.source)
        live.import_config(config)
        print(f"Imported {len(config.items)} item(s)")
        return 0

    if args.command == "seed":
        live = open_live_adapter(settings.site_prefix, args.data_root)
        outcome = seed_live_from_snapshot(live, SnapshotAdapter(args.snapshot))
        print(outcome.value)
        return 0

    if args.command in {"validate", "publish", "history"}:
        client = _publish_client(args, settings)
        live = open_live_adapter(settings.site_prefix, args.data_root)
        options = PublishOptions(wait_for_deployment=not getattr(args, "no_wait", False))
        pipeline = PublishPipeline(live, client, options=options)

        if args.command == "history":
            for commit in pipeline.publish_history(args.limit):
                print(f"{commit.short_sha} {commit.date} {commit.author}: {commit.message}")
            return 0

        # Publishing is gated on the same repository check.
        validation = pipeline.validate()
        if not validation.valid:
            print(f"ERROR: {validation.error}")
            return 2
        if args.command == "validate":
            print(f"OK (default branch: {validation.default_branch})")
            return 0

        result = pipeline.publish(on_status=_print_status)
        if not result.success:
            print(f"ERROR: {result.error}")
            return 1
        print(f"Published {result.commit_sha} -> {result.deployment_url}")
        return 0

    return 0


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Parameters
    ----------
    argv:
        Optional argument vector. If None, argparse uses sys.argv.

    Returns
    -------
    int
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.data_root is not None:
        args.data_root = Path(args.data_root)
    _configure_logging(args.verbose)

    try:
        return _dispatch(args)
    except (BentoError, ValueError) as exc:
        print(f"ERROR: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
