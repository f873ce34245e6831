# passage_rag/interface/cli.py

from typing import List, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table


console = Console()


def display_welcome_banner(collection: str, backend: str) -> None:
    console.print(Panel.fit(
        "[bold cyan]📚 Passage RAG[/bold cyan]\n"
        f"[dim]collection '{collection}' · embeddings via {backend}[/dim]",
        box=box.DOUBLE,
        border_style="cyan",
    ))


def display_ingestion_summary(rows: List[Tuple[str, int]], total_points: int) -> None:
    """One row per ingested document: title and passage count."""
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("Document")
    table.add_column("Passages", justify="right")

    for title, passages in rows:
        style = "red" if passages == 0 else ""
        table.add_row(title, str(passages), style=style)

    console.print(table)
    console.print(f"[green]✓[/green] Index ready: [bold]{total_points}[/bold] passages stored.\n")


def prompt_for_question() -> str:
    return Prompt.ask("\n[bold yellow]❓ Your question[/bold yellow]")


def begin_answer() -> None:
    console.print("\n[bold]Answer:[/bold]")


def print_fragment(text: str) -> None:
    console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


def display_no_results(message: str) -> None:
    console.print(f"[yellow]{message}[/yellow]")


def end_answer(cancelled: bool = False) -> None:
    if cancelled:
        console.print("\n[dim](answer cancelled)[/dim]")
    else:
        console.print()


def display_error(message: str) -> None:
    console.print(f"\n[bold red]✗ Error:[/bold red] {message}\n")


def ask_continue() -> bool:
    answer = Prompt.ask(
        "\n[dim]Ask another question?[/dim]",
        choices=["y", "n"],
        default="y",
    )
    return answer.lower() == "y"
