"""
Typer CLI for the CodeDrill scheduling core.

Commands:
    codedrill db init               - Initialize database tables
    codedrill problems add SLUG     - Register problem metadata
    codedrill problems list         - List known problems
    codedrill session start         - Compose today's session (new + review)
    codedrill session skip ID SLOT  - Skip the "new" or "review" slot
    codedrill session complete ID   - End a session now
    codedrill session expire        - Abandon sessions past the lock timeout
    codedrill attempt start SLUG    - Start an attempt on a problem
    codedrill attempt hint ID       - Count an AI hint
    codedrill attempt status ID     - Time left on an attempt
    codedrill attempt give-up ID    - Give up (rate afterwards)
    codedrill attempt rate ID N     - Rate 1-4 (again/hard/good/easy)
    codedrill due                   - Show due cards
    codedrill preview SLUG          - Show the outcome of each rating
    codedrill stats                 - Card and category statistics

Usage:
    codedrill --help
    codedrill problems add two-sum --title "Two Sum" --category Arrays --difficulty Easy
    codedrill session start
    codedrill attempt rate 7 good
"""

from __future__ import annotations

from datetime import datetime

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from src.core.errors import CodeDrillError
from src.core.log_config import configure_logging
from src.scheduling.models import CardType, Rating, utc_now

app = typer.Typer(
    help="CodeDrill: spaced-repetition scheduling for coding interview practice",
    no_args_is_help=True,
)

console = Console()

RATING_NAMES = {"again": 1, "hard": 2, "good": 3, "easy": 4}


@app.callback()
def main_callback() -> None:
    """Configure logging before any command runs."""
    configure_logging(get_settings())


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Lazily initializes services so `--help` never touches the database.
    """

    def __init__(self):
        self.settings = get_settings()
        self._database = None
        self._repository = None
        self._orchestrator = None
        self._tracker = None
        self._scheduler = None

    @property
    def database(self):
        if self._database is None:
            from src.db.database import get_database

            self._database = get_database()
            self._database.init_db()
        return self._database

    @property
    def repository(self):
        if self._repository is None:
            from src.db.repository import Repository

            self._repository = Repository(self.database)
        return self._repository

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from src.sessions.orchestrator import SessionOrchestrator

            self._orchestrator = SessionOrchestrator.from_settings(self.repository, self.settings)
        return self._orchestrator

    @property
    def tracker(self):
        if self._tracker is None:
            from src.practice.attempts import AttemptTracker

            self._tracker = AttemptTracker.from_settings(
                self.repository,
                self.settings,
                mutex=self.orchestrator.mutex,
                orchestrator=self.orchestrator,
            )
        return self._tracker

    @property
    def scheduler(self):
        if self._scheduler is None:
            from src.scheduling.fsrs import FSRSScheduler
            from src.scheduling.params import SchedulerParams

            self._scheduler = FSRSScheduler(SchedulerParams.from_settings(self.settings))
        return self._scheduler

    def close(self) -> None:
        if self._tracker is not None:
            self._tracker.close()


def _build_context() -> CLIContext:
    """Build CLI context with dependency injection."""
    return CLIContext()


def _fail(error: Exception) -> None:
    rprint(f"[red]✗[/red] {error}")
    raise typer.Exit(code=1)


def _card_type(value: str | None) -> CardType | None:
    if value is None:
        return None
    try:
        return CardType(value)
    except ValueError:
        rprint(f"[red]✗[/red] Unknown card type {value!r} (expected dsa or system_design)")
        raise typer.Exit(code=2)


def _problem_id(ctx: CLIContext, slug: str) -> int:
    problem = ctx.repository.get_problem_by_slug(slug)
    if problem is None:
        rprint(f"[red]✗[/red] Unknown problem {slug!r}. Add it with `codedrill problems add`.")
        raise typer.Exit(code=1)
    return problem.problem_id


def _fmt(dt: datetime | None) -> str:
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "-"


# ========================================
# DB COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    logger.info("Initializing database tables...")
    ctx = _build_context()
    try:
        ctx.database
    except CodeDrillError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Database initialized at {ctx.settings.database_url}")


# ========================================
# PROBLEM COMMANDS
# ========================================

problems_app = typer.Typer(help="Problem metadata")
app.add_typer(problems_app, name="problems")


@problems_app.command("add")
def problems_add(
    slug: str = typer.Argument(..., help="Unique problem slug, e.g. two-sum"),
    title: str = typer.Option(None, "--title", help="Display title (defaults to the slug)"),
    category: str = typer.Option(..., "--category", "-c", help="Broad category, e.g. Arrays"),
    difficulty: str = typer.Option(
        "Medium", "--difficulty", "-d", help="Easy, Medium, Hard or SystemDesign"
    ),
    pattern: str = typer.Option(None, "--pattern", "-p", help="Solution pattern, e.g. Two Pointers"),
) -> None:
    """Register a problem so it can be scheduled."""
    if difficulty not in ("Easy", "Medium", "Hard", "SystemDesign"):
        rprint(f"[red]✗[/red] Unknown difficulty {difficulty!r}")
        raise typer.Exit(code=2)
    ctx = _build_context()
    try:
        problem = ctx.repository.add_problem(
            slug=slug,
            title=title or slug,
            category=category,
            difficulty=difficulty,
            pattern=pattern,
        )
    except CodeDrillError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Problem #{problem.problem_id} {problem.slug} ({problem.difficulty})")


@problems_app.command("list")
def problems_list() -> None:
    """List registered problems."""
    ctx = _build_context()
    problems = ctx.repository.list_problems()
    table = Table(title=f"Problems ({len(problems)})")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Slug", style="cyan")
    table.add_column("Title")
    table.add_column("Difficulty")
    table.add_column("Category / Pattern", style="magenta")
    for p in problems:
        table.add_row(str(p.problem_id), p.slug, p.title, p.difficulty, p.interleave_category)
    console.print(table)


# ========================================
# SESSION COMMANDS
# ========================================

session_app = typer.Typer(help="Practice sessions (one new problem + one review)")
app.add_typer(session_app, name="session")


@session_app.command("start")
def session_start(
    card_type: str = typer.Option(None, "--card-type", "-t", help="dsa or system_design"),
    problem: str = typer.Option(None, "--problem", help="Pre-select the new problem by slug"),
) -> None:
    """Compose a session: one unseen problem and one due review."""
    from src.sessions.models import SessionSignal

    ctx = _build_context()
    ctype = _card_type(card_type)
    try:
        ctx.orchestrator.expire_stale_sessions()
        new_problem_id = _problem_id(ctx, problem) if problem else None
        plan = ctx.orchestrator.build_session(card_type=ctype, new_problem_id=new_problem_id)
    except CodeDrillError as e:
        _fail(e)

    if plan.is_empty:
        rprint("[yellow]Nothing to practice:[/yellow] no due reviews and no new problems.")
        return

    lines = [f"[bold]Session #{plan.session_id}[/bold]"]
    for label, card in (("New", plan.new_card), ("Review", plan.review_card)):
        if card is None:
            continue
        p = ctx.repository.get_problem(card.problem_id)
        lines.append(f"  {label:<7} {p.slug}  [dim]{p.difficulty}, {p.interleave_category}[/dim]")
    if SessionSignal.NO_DUE_CARDS in plan.signals:
        lines.append("  [dim]No reviews due[/dim]")
    if SessionSignal.NO_NEW_CARDS in plan.signals:
        lines.append("  [dim]No new problems left[/dim]")
    console.print(Panel("\n".join(lines), title="Today's session", border_style="cyan"))


@session_app.command("skip")
def session_skip(
    session_id: int = typer.Argument(..., help="Session id"),
    slot: str = typer.Argument(..., help="new or review"),
) -> None:
    """Skip one slot of a session without rating it."""
    if slot not in ("new", "review"):
        rprint("[red]✗[/red] Slot must be 'new' or 'review'")
        raise typer.Exit(code=2)
    ctx = _build_context()
    try:
        stored = ctx.orchestrator.skip_slot(session_id, slot)
    except CodeDrillError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Session #{session_id}: {slot} slot skipped ({stored.status})")


@session_app.command("complete")
def session_complete(session_id: int = typer.Argument(..., help="Session id")) -> None:
    """End a session; unrated slots count as skipped."""
    ctx = _build_context()
    try:
        stored = ctx.orchestrator.complete_session(session_id)
    except CodeDrillError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Session #{session_id} {stored.status}")


@session_app.command("expire")
def session_expire() -> None:
    """Abandon open sessions older than the lock timeout."""
    ctx = _build_context()
    abandoned = ctx.orchestrator.expire_stale_sessions()
    rprint(f"[green]✓[/green] {len(abandoned)} stale session(s) abandoned")


# ========================================
# ATTEMPT COMMANDS
# ========================================

attempt_app = typer.Typer(help="Attempts on problems")
app.add_typer(attempt_app, name="attempt")


@attempt_app.command("start")
def attempt_start(
    slug: str = typer.Argument(..., help="Problem slug"),
    session_id: int = typer.Option(None, "--session", "-s", help="Session the attempt belongs to"),
    card_type: str = typer.Option("dsa", "--card-type", "-t", help="dsa or system_design"),
) -> None:
    """Start practicing a problem."""
    ctx = _build_context()
    try:
        attempt = ctx.tracker.start_attempt(
            _problem_id(ctx, slug), card_type=_card_type(card_type), session_id=session_id
        )
    except CodeDrillError as e:
        _fail(e)
    finally:
        ctx.close()

    minutes = (attempt.time_budget_ms or 0) // 60_000
    rprint(f"[green]✓[/green] Attempt #{attempt.attempt_id} on {slug} (attempt {attempt.ordinal})")
    rprint(f"  Time budget: {minutes} min")
    if attempt.was_mutation:
        rprint(f"  [magenta]Mutated problem[/magenta]: {attempt.mutation_class}")


@attempt_app.command("hint")
def attempt_hint(attempt_id: int = typer.Argument(..., help="Attempt id")) -> None:
    """Count one AI hint against an attempt."""
    ctx = _build_context()
    try:
        count = ctx.tracker.record_hint(attempt_id)
    except CodeDrillError as e:
        _fail(e)
    finally:
        ctx.close()
    rprint(f"[green]✓[/green] Hints used on attempt #{attempt_id}: {count}")


@attempt_app.command("status")
def attempt_status(attempt_id: int = typer.Argument(..., help="Attempt id")) -> None:
    """Show time left on an attempt."""
    ctx = _build_context()
    try:
        attempt = ctx.repository.get_attempt(attempt_id)
    except CodeDrillError as e:
        _fail(e)
    timer = ctx.tracker.timer_for(attempt)
    ctx.close()
    if attempt.is_finalized:
        rprint(f"Attempt #{attempt_id} is rated ({Rating(attempt.rating).name.title()})")
        return
    if timer is None:
        rprint(f"Attempt #{attempt_id} has no time budget")
        return
    now = utc_now()
    remaining = timer.remaining_ms(now) // 1000
    color = timer.phase(now).value
    rprint(f"Attempt #{attempt_id}: [{color}]{remaining // 60}:{remaining % 60:02d} left[/{color}]")
    if timer.is_expired(now):
        rprint("  [red]Time is up.[/red] Rate the attempt or give up.")
    elif timer.is_warning(now):
        rprint("  [yellow]Less than five minutes left.[/yellow]")
def attempt_give_up(attempt_id: int = typer.Argument(..., help="Attempt id")) -> None:
    """Give up on an attempt. Scheduling changes only once you rate it."""
    ctx = _build_context()
    try:
        ctx.tracker.give_up(attempt_id)
    except CodeDrillError as e:
        _fail(e)
    finally:
        ctx.close()
    rprint(f"[yellow]Gave up on attempt #{attempt_id}.[/yellow] Rate it to reschedule the problem.")


@attempt_app.command("rate")
def attempt_rate(
    attempt_id: int = typer.Argument(..., help="Attempt id"),
    rating: str = typer.Argument(..., help="1-4 or again/hard/good/easy"),
    notes: str = typer.Option(None, "--notes", help="Free-form notes"),
) -> None:
    """Rate an attempt and reschedule its problem."""
    ctx = _build_context()
    value = RATING_NAMES.get(rating.strip().lower(), rating)
    try:
        outcome = ctx.tracker.submit_rating(attempt_id, value, notes=notes)
    except CodeDrillError as e:
        _fail(e)
    finally:
        ctx.close()

    card = outcome.card
    rprint(
        f"[green]✓[/green] Attempt #{attempt_id} rated {Rating(outcome.attempt.rating).name.title()}"
    )
    rprint(f"  State: {outcome.log.state_before.value} -> {card.state.value}")
    rprint(f"  Stability: {card.stability:.2f} days, difficulty: {card.difficulty:.2f}")
    rprint(f"  Next review: {_fmt(card.due)} UTC")
    if outcome.card_was_reset:
        rprint("  [yellow]Card state was invalid and has been reset.[/yellow]")


# ========================================
# REPORTING COMMANDS
# ========================================


@app.command("due")
def show_due(
    card_type: str = typer.Option(None, "--card-type", "-t", help="dsa or system_design"),
) -> None:
    """Show cards due for review now."""
    ctx = _build_context()
    now = utc_now()
    cards = ctx.repository.list_due_cards(now, _card_type(card_type))
    table = Table(title=f"Due reviews ({len(cards)})")
    table.add_column("Problem", style="cyan")
    table.add_column("State")
    table.add_column("Due (UTC)")
    table.add_column("Lapses", justify="right")
    table.add_column("R", justify="right", style="green")
    for card in cards:
        p = ctx.repository.get_problem(card.problem_id)
        r = ctx.scheduler.retrievability_at(card, now)
        table.add_row(
            p.slug, card.state.value, _fmt(card.due), str(card.lapses), f"{r:.0%}" if r is not None else "-"
        )
    console.print(table)


@app.command("preview")
def show_preview(
    slug: str = typer.Argument(..., help="Problem slug"),
    card_type: str = typer.Option("dsa", "--card-type", "-t", help="dsa or system_design"),
) -> None:
    """Show where each rating would schedule a problem next."""
    from src.scheduling.models import Card

    ctx = _build_context()
    now = utc_now()
    problem_id = _problem_id(ctx, slug)
    ctype = _card_type(card_type)
    card = ctx.repository.get_card_for_problem(problem_id, ctype) or Card.new(problem_id, now, ctype)
    try:
        outcomes = ctx.scheduler.preview(card, now)
    except CodeDrillError as e:
        _fail(e)
    table = Table(title=f"{slug}: {card.state.value}")
    table.add_column("Rating", style="cyan")
    table.add_column("Next state")
    table.add_column("Due (UTC)")
    table.add_column("Stability", justify="right")
    for rating, result in outcomes.items():
        table.add_row(rating.name.title(), result.state.value, _fmt(result.due), f"{result.stability:.2f}")
    console.print(table)


@app.command("stats")
def show_stats() -> None:
    """Show card counts by state and progress per category."""
    from src.scheduling.stats import card_stats

    ctx = _build_context()
    stats = card_stats(ctx.repository.list_cards(), utc_now())

    table = Table(title="Cards")
    table.add_column("State", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("New", str(stats.new_count))
    table.add_row("Learning", str(stats.learning_count))
    table.add_row("Review", str(stats.review_count))
    table.add_row("Relearning", str(stats.relearning_count))
    table.add_section()
    table.add_row("Due today", str(stats.due_today), style="bold")
    console.print(table)

    categories = ctx.repository.category_stats()
    if categories:
        cat_table = Table(title="Categories")
        cat_table.add_column("Category", style="cyan")
        cat_table.add_column("Total", justify="right")
        cat_table.add_column("Attempted", justify="right", style="yellow")
        cat_table.add_column("Solved", justify="right", style="green")
        for c in categories:
            cat_table.add_row(c.category, str(c.total), str(c.attempted), str(c.solved))
        console.print(cat_table)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint("[bold]codedrill[/bold] v0.1.0")
    rprint("  FSRS scheduling for coding interview practice")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
