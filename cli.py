import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from pulse.config import get_api_key, load_settings, save_config
from pulse.constants import DATA_DIR
from pulse.embeddings import HttpEmbedder
from pulse.filestore import JsonArticleStore, JsonFeedbackStore, JsonSnapshotStore, JsonUserStore
from pulse.interests import InterestMatcher
from pulse.logging_config import configure_logging
from pulse.models import FeedbackAction
from pulse.reranker import OpenAIReranker
from pulse.scheduler import PulseScheduler
from pulse.service import PulseService

console = Console()

TREND_STYLE = {"NEW": "cyan", "UP": "green", "DOWN": "red", "STEADY": "dim"}


async def build_service(data_dir: Path, settings=None, api_key=None):
    """Service over the JSON stores in ``data_dir``; returns (service, closers)."""
    settings = settings or load_settings()
    users = JsonUserStore(data_dir)
    reranker = embedder = None
    if api_key:
        reranker = OpenAIReranker(
            api_key,
            model=settings.reranker_model,
            base_url=settings.reranker_base_url,
            timeout_seconds=settings.reranker_timeout_seconds,
        )
        embedder = HttpEmbedder(api_key, model=settings.embedding_model, base_url=settings.reranker_base_url)
    matcher = InterestMatcher(await users.list_interests(), embedder=embedder)
    service = PulseService(
        articles=JsonArticleStore(data_dir),
        snapshots=JsonSnapshotStore(data_dir),
        settings=settings,
        feedback=JsonFeedbackStore(data_dir),
        users=users,
        moods=users,
        saved=users,
        reranker=reranker,
        embedder=embedder,
        matcher=matcher,
    )
    closers = [c for c in (reranker, embedder) if c is not None]
    return service, closers


def print_items(title, items, personal=False):
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Heat" if not personal else "Score", justify="right")
    table.add_column("Trend")
    table.add_column("Title", style="bold")
    table.add_column("Source", style="dim cyan")
    table.add_column("Why", style="dim italic")

    for idx, it in enumerate(items, start=1):
        score = it.score_personal if personal and it.score_personal is not None else it.heat
        color = "green" if score > 0.6 else "yellow" if score > 0.4 else "white"
        trend = f"[{TREND_STYLE.get(it.trend, 'white')}]{it.trend}[/]"
        saved = " [magenta]★[/]" if it.saved else ""
        table.add_row(
            str(idx),
            f"[{color}]{score:.2f}[/{color}]",
            trend,
            f"{it.title}{saved}",
            it.source_id or "",
            ", ".join(it.reasons),
        )
    console.print(table)


async def cmd_generate(service, args):
    snapshot = await service.generate_hour(
        heuristics_only=args.heuristics_only, only_if_missing=args.only_if_missing
    )
    if snapshot is None:
        console.print("[yellow]Snapshot for this hour already exists.[/]")
        return 0
    console.print(
        f"[bold green]Stored {len(snapshot.items)} items for {snapshot.date} {snapshot.hour:02d}:00[/]"
    )
    print_items("Global", snapshot.items[: service.settings.take])
    return 0


async def cmd_global(service, args):
    items = await service.get_global(take=args.take, date=args.date)
    if not items:
        console.print("[yellow]No snapshot available yet.[/]")
        return 0
    print_items(f"Global ({args.date or 'today'})", items)
    return 0


async def cmd_personal(service, args):
    today = await service.get_today(take=args.take, user_id=args.user, mood=args.mood, blend=args.blend)
    print_items(f"Global {today.date} {today.current_hour:02d}:00", today.global_items)
    if today.personal_items:
        print_items(f"Your Pulse ({args.user})", today.personal_items, personal=True)
    else:
        console.print("[yellow]Nothing personal to show yet.[/]")
    return 0


async def cmd_feedback(service, args):
    event = await service.record_feedback(args.user, args.article_id, args.mood, args.action)
    if event is None:
        console.print(f"[red]Article {args.article_id} not found.[/]")
        return 1
    console.print(f"[green]Recorded {event.action} ({event.mood}) for {event.article_id}[/]")
    return 0


async def cmd_schedule(service, args):
    scheduler = PulseScheduler(service, interval_seconds=args.interval)
    try:
        await scheduler.run(max_cycles=args.cycles)
    finally:
        scheduler.stop()
    return 0


COMMANDS = {
    "generate": cmd_generate,
    "global": cmd_global,
    "personal": cmd_personal,
    "feedback": cmd_feedback,
    "schedule": cmd_schedule,
}


async def run(args):
    service, closers = await build_service(Path(args.data_dir), api_key=get_api_key())
    try:
        return await COMMANDS[args.command](service, args)
    finally:
        await service.drain()
        for c in closers:
            await c.aclose()


def parse_value(raw):
    lowered = raw.strip().lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def build_parser():
    parser = argparse.ArgumentParser(description="Pulse trending & personalized news ranking")
    parser.add_argument(
        "--data-dir",
        default=DATA_DIR,
        help=f"Directory holding the JSON stores (default: {DATA_DIR})",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate the snapshot for the current hour")
    gen.add_argument("--heuristics-only", action="store_true", help="Skip the reranker")
    gen.add_argument(
        "--only-if-missing", action="store_true", help="Do nothing if this hour already exists"
    )

    glob = sub.add_parser("global", help="Show the global list")
    glob.add_argument("--take", type=int, default=None, help="Items to show (default: config take)")
    glob.add_argument("--date", default=None, help="YYYY-MM-DD (default: today)")

    pers = sub.add_parser("personal", help="Show global + personal lists for a user")
    pers.add_argument("user", help="User id")
    pers.add_argument("--mood", default=None, help="Calm, Focused, Curious, Hyped, Meh, Stressed or Sad")
    pers.add_argument("--blend", type=float, default=None, help="0 = comfort, 1 = challenge")
    pers.add_argument("--take", type=int, default=None, help="Global items to show")

    fb = sub.add_parser("feedback", help="Record feedback for an article")
    fb.add_argument("user", help="User id")
    fb.add_argument("article_id", help="Article id")
    fb.add_argument("mood", help="Mood the feedback was given in")
    fb.add_argument("action", choices=[a.value for a in FeedbackAction], help="Feedback action")

    sched = sub.add_parser("schedule", help="Run the generation cycle periodically")
    sched.add_argument("--interval", type=float, default=None, help="Seconds between cycles")
    sched.add_argument("--cycles", type=int, default=None, help="Stop after N cycles")

    cfg = sub.add_parser("config", help="Save a config value")
    cfg.add_argument("key", help="Config key, e.g. take or timezone")
    cfg.add_argument("value", help="Value (numbers and true/false are parsed)")

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "config":
        value = parse_value(args.value)
        save_config(args.key, value)
        console.print(f"[green]Saved {args.key} = {value!r}[/]")
        return 0

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
