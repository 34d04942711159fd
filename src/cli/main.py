"""
Typer CLI for paced-recall.

Commands:
    paced db init           - Initialize database tables
    paced add FRONT BACK    - Add a card to a deck
    paced preview           - Show today's queue with predicted intervals
    paced study             - Run an interactive study session with break advice
    paced profile           - Show the learner profile and recommendations
    paced breaks            - Show recent break history
    paced presets           - List deck presets (or apply one with --apply)

Usage:
    paced --help
    paced db init
    paced add "What is TCP?" "A connection-oriented transport protocol"
    paced study --limit 20
    paced presets --apply language --deck spanish
"""

from __future__ import annotations

import sys
import time
from datetime import datetime

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from config import Settings, get_settings
from src.core.errors import PacedError, ValidationError
from src.db.database import init_db
from src.db.store import StudyStore
from src.personalization.manager import ProfileManager
from src.session.engine import SessionEngine
from src.session.state import SessionContext, SessionState
from src.srs.deck_config import PRESET_DESCRIPTIONS, PRESETS, get_preset, resolve_deck_config
from src.srs.models import Rating, RatingEvent
from src.srs.queue import build_queue, recommended_card_count
from src.srs.scheduler import CardScheduler

app = typer.Typer(
    name="paced",
    help="paced-recall: spaced repetition that knows when you need a break",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

RATING_LABELS = {
    Rating.AGAIN: "[red]Again[/red]",
    Rating.HARD: "[yellow]Hard[/yellow]",
    Rating.GOOD: "[green]Good[/green]",
    Rating.EASY: "[cyan]Easy[/cyan]",
}


def _store() -> StudyStore:
    init_db()
    return StudyStore()


def _user(user: str | None) -> str:
    return user or get_settings().default_user_id


def _format_interval(card) -> str:
    if card.state.value == "review":
        return f"{card.interval}d"
    return f"{card.interval}m"


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    init_db()
    rprint(f"[green]✓[/green] Database initialized at {get_settings().database_url}")


# ========================================
# CARD COMMANDS
# ========================================


@app.command()
def add(
    front: str = typer.Argument(..., help="Question side"),
    back: str = typer.Argument(..., help="Answer side"),
    deck: str = typer.Option("default", "--deck", "-d", help="Deck name"),
    bucket: str | None = typer.Option(None, "--bucket", "-b", help="Difficulty bucket for response-time baselines"),
) -> None:
    """Add a new card."""
    store = _store()
    try:
        card = store.add_card(front, back, deck=deck, difficulty_bucket=bucket)
    except ValidationError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Added card {card.id[:8]} to '{deck}'")


@app.command()
def preview(
    deck: str = typer.Option("default", "--deck", "-d", help="Deck name"),
    limit: int = typer.Option(20, "--limit", "-n", help="Cards to show"),
) -> None:
    """Show the next study queue with what each rating would do."""
    store = _store()
    config = resolve_deck_config(store.load_deck_config(deck))
    scheduler = CardScheduler(config)
    now = datetime.now()
    queue = build_queue(
        store.list_cards(deck), config, now, store.new_cards_introduced_on(now, deck)
    )

    if not queue:
        rprint("[green]Nothing due. Come back later![/green]")
        return

    table = Table(title=f"Queue for '{deck}' ({len(queue)} cards)")
    table.add_column("Card", style="dim")
    table.add_column("State")
    table.add_column("Front")
    table.add_column("Recall", justify="right")
    for rating in Rating:
        table.add_column(rating.value.title(), justify="right")

    for card in queue[:limit]:
        content = store.get_card_content(card.id) or {}
        outcomes = scheduler.predict_next_due(card, now)
        recall = scheduler.retention_probability(card, now)
        table.add_row(
            card.id[:8],
            card.state.value + (" (leech)" if card.is_leech else ""),
            (content.get("front") or "")[:40],
            f"{recall:.0%}" if card.last_reviewed else "-",
            *[_format_interval(outcomes[r].card) for r in Rating],
        )
    console.print(table)


# ========================================
# STUDY SESSION
# ========================================


@app.command()
def study(
    deck: str = typer.Option("default", "--deck", "-d", help="Deck name"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Maximum cards this session"),
    user: str | None = typer.Option(None, "--user", "-u", help="Learner id"),
) -> None:
    """Run an interactive study session."""
    settings = get_settings()
    user_id = _user(user)
    store = _store()
    profiles = ProfileManager(store, ema_alpha=settings.profile_ema_alpha)
    profile = profiles.initialize_profile(user_id)

    context = SessionContext.resolve(user_id, profile, store.load_deck_config(deck), settings)
    engine = SessionEngine(context)

    studied_today = store.cards_studied_on(user_id)
    workload = recommended_card_count(profile, studied_today, context.deck_config)
    if not workload.should_study:
        rprint(f"[yellow]{workload.reason}. Rest up and come back tomorrow.[/yellow]")
        return

    state = engine.start(
        store.list_cards(deck),
        baseline=store.load_baseline(user_id, context.baseline_config),
        new_cards_studied_today=store.new_cards_introduced_on(deck=deck),
        limit=limit,
    )
    if state.is_finished:
        rprint("[green]Nothing due. Come back later![/green]")
        return

    console.print(
        Panel(
            f"[bold cyan]STUDY SESSION[/]\n"
            f"Deck: {deck}\n"
            f"Queued: {len(state.queue)} cards\n"
            f"Suggested: {workload.recommended} cards ({workload.reason})",
            border_style="cyan",
        )
    )

    state = _study_loop(engine, store, state, profile.celebration_frequency)

    summary = engine.finish(state, datetime.now())
    if summary.cards_studied == 0:
        rprint("[dim]No cards studied.[/dim]")
        return

    store.log_session(summary)
    store.save_baseline(user_id, state.baseline)
    profile = profiles.update_profile(summary, profile)
    _show_summary(summary, profiles.get_recommendations(profile))


def _study_loop(engine: SessionEngine, store: StudyStore, state: SessionState, celebrate_every: int) -> SessionState:
    user_id = engine.context.user_id
    while not state.is_finished:
        card = state.current_card
        content = store.get_card_content(card.id) or {"front": "?", "back": "?"}

        console.print(Panel(content["front"], title=f"{card.state.value}", border_style="blue"))
        shown = time.monotonic()
        Prompt.ask("[dim]Press Enter to reveal[/dim]", default="", show_default=False)
        revealed = time.monotonic()
        console.print(Panel(content["back"], border_style="green"))

        choice = Prompt.ask(
            "Rate: [1] Again  [2] Hard  [3] Good  [4] Easy  [q] Quit",
            choices=["1", "2", "3", "4", "q"],
        )
        if choice == "q":
            break
        event = RatingEvent(
            card_id=card.id,
            rating=Rating.parse(choice),
            response_time_ms=(revealed - shown) * 1000,
            hesitation_time_ms=(time.monotonic() - revealed) * 1000,
            timestamp=datetime.now(),
            difficulty_bucket=content.get("difficulty_bucket"),
        )

        try:
            step = engine.submit_rating(state, event)
        except PacedError as e:
            logger.warning(f"Rating rejected: {e}")
            rprint(f"[red]✗[/red] {e}")
            continue

        state = step.state
        if step.ended_break is not None:
            store.log_break(user_id, step.ended_break)
        try:
            if not store.save_card(step.grade.card):
                rprint("[yellow]Progress for this card could not be saved.[/yellow]")
        finally:
            state = engine.release(state, card.id)

        transitions = step.grade.transitions
        if transitions.graduated:
            rprint("[green]✓ Graduated to review[/green]")
        if transitions.became_leech:
            rprint("[red]This card keeps slipping - it has been marked as a leech.[/red]")
        if celebrate_every and state.cards_studied % celebrate_every == 0:
            rprint(f"[magenta]🎉 {state.cards_studied} cards done![/magenta]")

        if step.suggestion is not None:
            state = _offer_break(engine, store, state, user_id)

    return state


def _offer_break(engine: SessionEngine, store: StudyStore, state: SessionState, user_id: str) -> SessionState:
    suggestion = state.pending_suggestion
    body = suggestion.message
    if suggestion.benefits:
        body += "\n\n" + "\n".join(f"• {b}" for b in suggestion.benefits)
    console.print(
        Panel(
            body,
            title=f"Break suggested ({suggestion.suggested_duration} min, {suggestion.confidence:.0f}% confidence)",
            border_style="yellow",
        )
    )

    if not Confirm.ask("Take a break now?", default=True):
        state, event = engine.dismiss_break(state, datetime.now())
        if event is not None:
            store.log_break(user_id, event)
        return state

    state = engine.take_break(state, datetime.now())
    Prompt.ask(
        f"[dim]Enjoy your break. Press Enter when you're back (planned: {suggestion.suggested_duration} min)[/dim]",
        default="",
        show_default=False,
    )
    energy = IntPrompt.ask("How fresh do you feel? (1 = exhausted, 5 = fully rested)", choices=["1", "2", "3", "4", "5"])
    post_fatigue = (5 - energy) * 25.0
    state, event = engine.resume(state, post_fatigue, datetime.now())
    if event is not None:
        store.log_break(user_id, event)
        note = " (ended early)" if event.interrupted else ""
        rprint(f"[cyan]Break effectiveness: {event.effectiveness:.0f}%{note}[/cyan]")
    return state


def _show_summary(summary, recommendations) -> None:
    table = Table(title="Session Summary", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Cards studied", str(summary.cards_studied))
    table.add_row("Time", f"{summary.time_spent_seconds / 60:.1f} min")
    table.add_row("Retention", f"{summary.retention_rate:.0f}%")
    table.add_row(
        "Ratings",
        "  ".join(f"{RATING_LABELS[r]} {summary.rating_breakdown[r.value]}" for r in Rating),
    )
    table.add_row("Fatigue", f"{summary.fatigue_score:.0f} (peak {summary.peak_fatigue:.0f})")
    table.add_row("Trend", summary.performance_trend.value)
    table.add_row("Graduated / lapsed", f"{summary.graduated} / {summary.lapsed}")
    table.add_row("Breaks", f"{summary.breaks_taken} taken of {summary.break_suggestions} suggested")
    console.print(table)
    rprint(
        f"Next milestone: [bold]{recommendations.next_milestone}[/bold] cards · "
        f"best time to study: [bold]{recommendations.optimal_study_time}[/bold]"
    )


# ========================================
# PROFILE AND HISTORY
# ========================================


@app.command()
def profile(
    user: str | None = typer.Option(None, "--user", "-u", help="Learner id"),
) -> None:
    """Show the learner profile and recommendations."""
    settings = get_settings()
    user_id = _user(user)
    manager = ProfileManager(_store(), ema_alpha=settings.profile_ema_alpha)
    learner = manager.initialize_profile(user_id)
    recs = manager.get_recommendations(learner)

    table = Table(title=f"Profile: {user_id}" + (" (new)" if learner.is_cold_start else ""))
    table.add_column("Setting", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Sessions", str(learner.session_count))
    table.add_row("Cards studied", str(learner.total_cards_studied))
    table.add_row("Average session", f"{learner.average_session_length:.0f} min")
    table.add_row("Average cards / session", f"{learner.average_cards_per_session:.0f}")
    table.add_row("Retention", f"{learner.average_retention_rate:.0%}")
    table.add_row("Velocity", f"{learner.study_velocity:.0f} cards/h")
    table.add_row("Consistency", f"{learner.consistency_score:.0%}")
    table.add_row("Fatigue threshold", f"{recs.fatigue_warning_threshold:.0f}")
    table.add_row("Break", f"every {recs.break_interval} min for {recs.break_duration} min")
    table.add_row("Celebrate every", f"{recs.celebration_trigger} cards")
    table.add_row("Next milestone", str(recs.next_milestone))
    table.add_row("Session length", f"{recs.session_length_recommendation} min")
    table.add_row("Best time", recs.optimal_study_time)
    console.print(table)


@app.command()
def breaks(
    user: str | None = typer.Option(None, "--user", "-u", help="Learner id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Breaks to show"),
) -> None:
    """Show recent breaks and how well they worked."""
    rows = _store().list_breaks(_user(user), limit=limit)
    if not rows:
        rprint("[dim]No breaks recorded yet.[/dim]")
        return

    table = Table(title="Recent Breaks")
    table.add_column("When")
    table.add_column("Trigger")
    table.add_column("Taken")
    table.add_column("Minutes", justify="right")
    table.add_column("Fatigue", justify="right")
    table.add_column("Effect", justify="right")
    for row in rows:
        post = row["post_fatigue"]
        table.add_row(
            row["started_at"].strftime("%Y-%m-%d %H:%M"),
            row["trigger"],
            ("yes" + (" (early)" if row["interrupted"] else "")) if row["taken"] else "skipped",
            f"{row['actual']:.0f}/{row['planned']}",
            f"{row['pre_fatigue']:.0f}" + (f" → {post:.0f}" if post is not None else ""),
            f"{row['effectiveness']:.0f}%" if row["taken"] else "-",
        )
    console.print(table)


@app.command()
def presets(
    apply: str | None = typer.Option(None, "--apply", "-a", help="Preset to store for the deck"),
    deck: str = typer.Option("default", "--deck", "-d", help="Deck name"),
) -> None:
    """List deck presets, or apply one to a deck."""
    if apply:
        if apply.lower() not in PRESETS:
            rprint(f"[red]✗[/red] Unknown preset '{apply}'. Choose from: {', '.join(PRESETS)}")
            raise typer.Exit(code=1)
        config = get_preset(apply)
        _store().save_deck_config(deck, config.model_dump(mode="json"))
        rprint(f"[green]✓[/green] Applied '{apply}' to deck '{deck}'")
        return

    table = Table(title="Deck Presets")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    table.add_column("Steps (min)")
    table.add_column("Graduate / Easy (d)", justify="right")
    table.add_column("New / day", justify="right")
    for name, description in PRESET_DESCRIPTIONS.items():
        config = get_preset(name)
        table.add_row(
            name,
            description,
            ", ".join(f"{s:g}" for s in config.learning_steps),
            f"{config.graduating_interval} / {config.easy_interval}",
            str(config.new_cards_per_day),
        )
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


def _configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, format="<level>{message}</level>")
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def main() -> None:
    """Entry point for the CLI."""
    _configure_logging(get_settings())
    app()


if __name__ == "__main__":
    main()
