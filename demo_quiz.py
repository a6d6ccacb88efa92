"""
demo_quiz.py – End-to-end demo of the Case Quiz assessment engine

Run:
    python demo_quiz.py [path/to/case.txt]

Runs in mock mode (fallback bank + length heuristic) unless a .env file
provides Azure OpenAI or OpenAI credentials.  See .env.example for format.
"""

from __future__ import annotations

import sys
import tempfile
from pathlib import Path

# ── make src/ importable without installing the package ──────────────────────
sys.path.insert(0, str(Path(__file__).parent / "src"))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from case_quiz.config import get_settings
from case_quiz.database import QuizStore
from case_quiz.engine import AssessmentEngine
from case_quiz.llm import build_completion
from case_quiz.models import COMPETENCY_CATEGORIES, QuestionType

console = Console()

DEMO_USER = "demo-user"

SAMPLE_CASE = """\
Notice of licence withdrawal. On 14.03. the applicant was stopped at 01:40
while driving a passenger car. Breath test 1.3 per mille, blood sample 1.12 ‰.
The driving licence was withdrawn; a medical-psychological assessment (MPU)
is required before it can be reissued. Prior entry in the Flensburg register
(2 points) for speeding.
"""

DEMO_INTAKE = {
    "drinking":   {"before": "weekends, 6-8 beers", "now": "abstinent since April"},
    "support":    {"counselling": True, "group": "weekly"},
    "motivation": "I need the licence for shift work.",
}

# Canned answers: the right key for mcq, a short and a long text otherwise
_LONG_ANSWER = (
    "- I drove after a party because I underestimated how long alcohol stays in the blood.\n"
    "- Since then I have stopped drinking, attend a counselling group every week and "
    "keep liver-value controls every three months."
)

CATEGORY_NAMES = {c["key"]: c["name"] for c in COMPETENCY_CATEGORIES}


# ─── Display helpers ─────────────────────────────────────────────────────────

def _bar(score: int, width: int = 16) -> str:
    filled = round(score / 100 * width)
    return "[" + "█" * filled + "░" * (width - filled) + f"] {score}%"


def show_status() -> None:
    status = Table(box=box.ROUNDED, show_header=False, padding=(0, 1))
    status.add_column("Service", style="bold cyan", no_wrap=True)
    status.add_column("Status",  style="white")
    for name, badge in get_settings().status_summary().items():
        status.add_row(name, badge)
    console.print(Panel(status, title="[bold]Configuration[/bold]", border_style="magenta"))


def run_demo(engine: AssessmentEngine, case_text: str) -> None:
    profile = engine.sync_case_profile(DEMO_USER, case_text)
    if not profile.ok:
        console.print(f"[bold red]{profile.error.code.value}:[/bold red] {profile.error.message}")
        return
    flags = ", ".join(profile.value.risk_flags) or "[dim]none[/dim]"
    console.print(Panel(
        f"[bold]Risk flags:[/bold] {flags}\n"
        f"[bold]Hints:[/bold] {profile.value.facts.get('hints') or '[dim]none[/dim]'}",
        title="[bold]Case Profile[/bold]", border_style="blue",
    ))

    intake = engine.save_intake(DEMO_USER, DEMO_INTAKE, complete=True).value
    console.print(f"[dim]Baseline intake stored ({len(intake.answers())} sections, complete).[/dim]")

    status = engine.ensure_blueprint(DEMO_USER)
    meta = status.value.blueprint.generation_meta
    plan = ", ".join(f"{c.key}×{c.count}" for c in status.value.blueprint.categories)
    console.print(Panel(
        f"[bold]Questions:[/bold] {status.value.question_count}   "
        f"[bold]Source:[/bold] {meta.get('source')}   "
        f"[bold]Degraded:[/bold] {'yes' if status.value.degraded else 'no'}\n"
        f"[bold]Plan:[/bold] {plan}",
        title="[bold]Blueprint[/bold]", border_style="cyan",
    ))

    start = engine.start_session(DEMO_USER, count=8)
    session_id = start.value.session.id

    answers = Table(box=box.SIMPLE_HEAD, header_style="bold white on dark_violet", padding=(0, 1))
    answers.add_column("#",        justify="right")
    answers.add_column("Category", style="cyan")
    answers.add_column("Type",     justify="center")
    answers.add_column("Prompt",   style="white", max_width=60)
    answers.add_column("Score",    justify="right")

    detail = engine.session_detail(DEMO_USER, session_id).value
    correct_by_id = {q.id: q.correct_answer for q in detail.questions}
    for idx, q in enumerate(start.value.questions, start=1):
        if q.type is QuestionType.MCQ:
            answer = correct_by_id[q.id] if idx % 3 else "A"
        else:
            answer = _LONG_ANSWER if idx % 2 else "Not sure."
        fed = engine.submit_answer(DEMO_USER, session_id, q.id, answer, time_spent_sec=30)
        score = fed.value.feedback["score"]
        style = "green" if score >= 0.75 else "yellow" if score >= 0.5 else "red"
        answers.add_row(str(idx), q.category, q.type.value, q.prompt,
                        f"[{style}]{score:.2f}[/{style}]")
    console.print(Panel(answers, title="[bold]Practice Session[/bold]", border_style="green"))

    summary = engine.finish_session(DEMO_USER, session_id).value
    comp = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan", padding=(0, 1))
    comp.add_column("Competency", style="white", min_width=30)
    comp.add_column("Score",      justify="left", min_width=24)
    for key, name in CATEGORY_NAMES.items():
        if key in summary.competency_scores:
            comp.add_row(name, _bar(summary.competency_scores[key]))
        else:
            comp.add_row(name, "[dim]not assessed[/dim]")
    console.print(Panel(
        comp,
        title=f"[bold]Result — {summary.score}% overall "
              f"({summary.scored_count} answers, {summary.duration_seconds}s)[/bold]",
        border_style="yellow",
    ))


# ─── Main ────────────────────────────────────────────────────────────────────

def main() -> None:
    console.print()
    console.print(Panel(
        "[bold]Case Quiz — MPU interview practice[/bold]\n"
        "[dim]Adaptive Assessment Engine  •  end-to-end demo[/dim]",
        style="on dark_violet",
        expand=False,
    ))
    show_status()

    case_text = Path(sys.argv[1]).read_text(encoding="utf-8") if len(sys.argv) > 1 else SAMPLE_CASE

    try:
        with tempfile.TemporaryDirectory() as tmp:
            store = QuizStore(Path(tmp) / "demo.db")
            store.init_db()
            settings = get_settings()
            engine = AssessmentEngine(store, complete=build_completion(settings), settings=settings)
            run_demo(engine, case_text)

    except EnvironmentError as e:
        console.print(f"\n[bold red]Configuration error:[/bold red] {e}")
        console.print("[dim]Create a .env file based on .env.example and retry.[/dim]")
        sys.exit(1)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(0)

    except Exception:
        console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
