from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Optional

import typer
from tqdm import tqdm

from .composer import ExportComposer, ExportSession
from .config import PRIMARY_ACCOUNT, AppConfig
from .delivery import FolderSink
from .errors import ArchiveError
from .fs import CACHE_MAX_AGE, LocalArchiveSource, guess_mime, list_dates, list_stories
from .index import (
    Archive,
    dates_for_user,
    find_entry,
    load_archive,
    snapshot_users,
    snapshots_chronological,
    sorted_dates,
    sorted_users,
    users_for_date,
)
from .logger import Logger, error, info, set_logger, warning
from .models import ExportKind, ExportPlan, ExportResult
from .planner import Planner
from .remote import ListingClient, RemoteArchiveSource, is_remote
from .simulator import DryRunSimulator
from .stats import compute_user_stats, format_breakdown, format_date_label, format_user_stats

app = typer.Typer(
    name="story-archive",
    help="Story Archive Explorer - browse an exported stories archive and render shareable exports",
    add_completion=False,
)

# Composer entry point for each single-story mode
STORY_EXPORTS = {
    ExportKind.ORIGINAL: "export_original",
    ExportKind.RECORDING: "export_story",
    ExportKind.SCREENSHOT: "export_screenshot",
}


class TqdmProgress:
    """Shows export progress percentages as a tqdm bar."""

    def __init__(self, desc: str, disable: bool = False) -> None:
        self.bar = tqdm(total=100, desc=desc, unit="%", disable=disable,
                        bar_format="{desc}: {percentage:3.0f}%|{bar}| {postfix}")

    def __call__(self, percent: float, message: str) -> None:
        self.bar.update(max(0.0, percent - self.bar.n))
        self.bar.set_postfix_str(message)

    def close(self) -> None:
        self.bar.close()


def _config(ctx: typer.Context, **overrides) -> AppConfig:
    state = ctx.obj or {}
    return AppConfig(
        primary_account=state.get("primary", PRIMARY_ACCOUNT),
        verbose=state.get("verbose", False),
        quiet=state.get("quiet", False),
        **overrides,
    )


def _load(root: str, cfg: AppConfig) -> Archive:
    if is_remote(root):
        source = RemoteArchiveSource(ListingClient(root, timeout=cfg.request_timeout))
    else:
        path = Path(root)
        if not path.is_dir():
            error(f"Archive folder does not exist: {root}")
            raise typer.Exit(code=2)
        source = LocalArchiveSource(path.resolve())

    info(f"📂 Loading archive from {root}")
    try:
        archive = load_archive(source.files(), cfg.primary_account)
    except OSError as e:
        error(f"Could not read archive: {root}", e)
        raise typer.Exit(code=1)
    if archive.is_empty:
        error("No valid story archives found. Please select the AutoExport folder.")
        raise typer.Exit(code=1)
    return archive


def _report(result: ExportResult) -> None:
    for w in result.warnings:
        if w.code == "concatenation-unsupported":
            warning(f"Export degraded: {w.message}")
    info(
        f"💾 Saved {result.destination} "
        f"({result.segments_rendered}/{result.segments_total} segments, {result.backend})"
    )


def _run_export(
    archive: Archive,
    plan: ExportPlan,
    cfg: AppConfig,
    output: Path,
    start: Callable[[ExportComposer], ExportResult],
) -> None:
    if cfg.dry_run:
        filename = Planner().output_filename(plan)
        DryRunSimulator(archive.avatars).simulate_export(plan, filename, output)
        return

    progress = TqdmProgress(f"Exporting {plan.kind.value}", disable=cfg.quiet)
    composer = ExportComposer(cfg, archive.avatars, FolderSink(output), ExportSession(cfg), on_progress=progress)
    try:
        result = start(composer)
    except ArchiveError as e:
        progress.close()
        error("Export failed", e)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        progress.close()
        error("Export cancelled by user")
        raise typer.Exit(code=130)
    progress.close()
    _report(result)


@app.callback()
def main(
    ctx: typer.Context,
    primary: str = typer.Option(
        PRIMARY_ACCOUNT,
        "--primary",
        help="Account whose stories carry reshare attribution",
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Suppress all output except errors"),
) -> None:
    """
    Story Archive Explorer

    ROOT is the exported archive folder (AutoExport) or the URL of its
    listing service.
    """
    set_logger(Logger(AppConfig(verbose=verbose, quiet=quiet).log_level))
    ctx.obj = {"primary": primary, "verbose": verbose, "quiet": quiet}


@app.command()
def summary(ctx: typer.Context, root: str = typer.Argument(..., help="Archive folder or listing URL")) -> None:
    """Print how many dates, users, avatars and profile snapshots were found."""
    cfg = _config(ctx)
    archive = _load(root, cfg)
    index = archive.index
    info(f"📅 Dates: {len(index.by_date)}")
    info(f"👤 Users: {len(index.by_user)}")
    info(f"🎬 Stories: {format_breakdown(sum(index.by_date.values(), ()))}")
    info(f"📸 Avatars: {len(archive.avatars)}")
    info(f"📸 Profile snapshots: {sum(len(s) for s in archive.snapshots.values())} "
         f"for {len(archive.snapshots)} users")
    if archive.skipped:
        info(f"Skipped {archive.skipped} files that are not stories")


@app.command()
def dates(
    ctx: typer.Context,
    root: str = typer.Argument(..., help="Archive folder or listing URL"),
    expand: bool = typer.Option(False, "--expand", help="List the users of every date"),
) -> None:
    """List archive dates, newest first."""
    cfg = _config(ctx)
    archive = _load(root, cfg)
    for date in sorted_dates(archive.index):
        stories = archive.index.by_date[date]
        users = users_for_date(archive.index, date, cfg.primary_account)
        info(f"📅 {format_date_label(date)} ({date}) • {len(stories)} stories from {len(users)} users")
        if expand:
            for username, entries in users:
                info(f"    👤 {username} • {format_breakdown(entries)}")


@app.command()
def users(
    ctx: typer.Context,
    root: str = typer.Argument(..., help="Archive folder or listing URL"),
    expand: bool = typer.Option(False, "--expand", help="List the dates of every user"),
) -> None:
    """List users with posting statistics."""
    cfg = _config(ctx)
    archive = _load(root, cfg)
    for username in sorted_users(archive.index, cfg.primary_account):
        per_date = dates_for_user(archive.index, username)
        stats = compute_user_stats(archive.index.by_user[username])
        info(f"👤 {username} • {format_user_stats(stats, len(per_date))}")
        if expand:
            for date, entries in per_date:
                info(f"    📅 {format_date_label(date)} • {format_breakdown(entries)}")


@app.command()
def snapshots(ctx: typer.Context, root: str = typer.Argument(..., help="Archive folder")) -> None:
    """List captured profile snapshots per user."""
    cfg = _config(ctx)
    archive = _load(root, cfg)
    if not archive.snapshots:
        info("No profile snapshots found")
        return
    for username in snapshot_users(archive.snapshots):
        shots = snapshots_chronological(archive.snapshots[username])
        info(f"👤 {username} • {len(shots)} snapshots")
        for shot in shots:
            info(f"    📅 {shot.date} {shot.filename}")


@app.command()
def listing(
    root: Path = typer.Argument(..., help="Local archive folder"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="List the stories of one date"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Describe one file, e.g. 20250808/jane/a.jpg"),
) -> None:
    """Print the JSON listing a listing service would answer for ROOT."""
    if not root.is_dir():
        error(f"Archive folder does not exist: {root}")
        raise typer.Exit(code=2)
    if file:
        path = (root / file).resolve()
        if root.resolve() not in path.parents or not path.is_file():
            error(f"File not found: {file}")
            raise typer.Exit(code=2)
        payload = {
            "path": file,
            "mime": guess_mime(path),
            "size": path.stat().st_size,
            "max_age": CACHE_MAX_AGE,
        }
    elif date:
        payload = list_stories(root, date)
    else:
        payload = list_dates(root)
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def export(
    ctx: typer.Context,
    root: str = typer.Argument(..., help="Archive folder or listing URL"),
    story: str = typer.Argument(..., help="Story path, e.g. 20250808/janedoe/janedoe_story_01.jpg"),
    mode: ExportKind = typer.Option(
        ExportKind.RECORDING, "--mode", "-m",
        help="original, recording or screenshot",
    ),
    output: Path = typer.Option(Path("exports"), "-o", "--output", help="Output folder"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview the export without rendering"),
    use_ffmpeg: bool = typer.Option(True, "--ffmpeg/--no-ffmpeg", help="Try the ffmpeg encoder first"),
) -> None:
    """Export a single story."""
    if mode.is_visual_experience:
        error("Use the 'visual' command for multi-story exports")
        raise typer.Exit(code=2)
    cfg = _config(ctx, dry_run=dry_run, use_ffmpeg=use_ffmpeg, output_dir=output)
    archive = _load(root, cfg)
    entry = find_entry(archive.index, story)
    if entry is None:
        error(f"Story not found in archive: {story}")
        raise typer.Exit(code=2)
    plan = Planner().plan_story(entry, mode)
    _run_export(archive, plan, cfg, output, lambda c: getattr(c, STORY_EXPORTS[mode])(entry))


@app.command()
def visual(
    ctx: typer.Context,
    root: str = typer.Argument(..., help="Archive folder or listing URL"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Username to export"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Date to export (YYYYMMDD)"),
    output: Path = typer.Option(Path("exports"), "-o", "--output", help="Output folder"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview the export without rendering"),
    use_ffmpeg: bool = typer.Option(True, "--ffmpeg/--no-ffmpeg", help="Try the ffmpeg encoder first"),
) -> None:
    """Export a visual experience: every story of a user, a date, or both."""
    if not user and not date:
        error("Pass --user, --date or both")
        raise typer.Exit(code=2)
    cfg = _config(ctx, dry_run=dry_run, use_ffmpeg=use_ffmpeg, output_dir=output)
    archive = _load(root, cfg)
    plan = Planner().plan_from_index(archive.index, username=user, date=date)
    if not plan.entries:
        error("No stories match the selection")
        raise typer.Exit(code=1)
    _run_export(
        archive, plan, cfg, output,
        lambda c: c.export_visual_experience(plan.kind, plan.identifier, list(plan.entries)),
    )


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    app()
