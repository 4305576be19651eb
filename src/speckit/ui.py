"""Console rendering: banner, step tracker and arrow-key selection."""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import readchar
import typer
from rich.align import Align
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

console = Console()

BANNER = """
███████╗██████╗ ███████╗ ██████╗██╗███████╗██╗   ██╗
██╔════╝██╔══██╗██╔════╝██╔════╝██║██╔════╝╚██╗ ██╔╝
███████╗██████╔╝█████╗  ██║     ██║█████╗   ╚████╔╝
╚════██║██╔═══╝ ██╔══╝  ██║     ██║██╔══╝    ╚██╔╝
███████║██║     ███████╗╚██████╗██║██║        ██║
╚══════╝╚═╝     ╚══════╝ ╚═════╝╚═╝╚═╝        ╚═╝
"""

TAGLINE = "Spec Kit - Spec-Driven Development Toolkit"

BANNER_COLORS = ["bright_blue", "blue", "cyan", "bright_cyan", "white", "bright_white"]

STEP_SYMBOLS = {
    "pending": "[green dim]○[/green dim]",
    "running": "[cyan]○[/cyan]",
    "done": "[green]●[/green]",
    "error": "[red]●[/red]",
    "skipped": "[yellow]○[/yellow]",
}


@dataclass
class Step:
    key: str
    label: str
    status: str = "pending"
    detail: str = ""

    def markup(self) -> str:
        symbol = STEP_SYMBOLS.get(self.status, " ")
        detail = self.detail.strip()
        if self.status == "pending":
            text = f"{self.label} ({detail})" if detail else self.label
            return f"{symbol} [bright_black]{text}[/bright_black]"
        suffix = f" [bright_black]({detail})[/bright_black]" if detail else ""
        return f"{symbol} [white]{self.label}[/white]{suffix}"


class StepTracker:
    """Ordered set of named steps rendered as a rich Tree.

    Cache resolution and ``specify init`` report progress through the same
    tracker; an attached callback refreshes a surrounding Live display after
    every change.
    """

    def __init__(self, title: str):
        self.title = title
        self._steps: Dict[str, Step] = {}
        self._refresh: Optional[Callable[[], None]] = None

    @property
    def steps(self) -> List[Step]:
        return list(self._steps.values())

    def attach_refresh(self, cb: Callable[[], None]):
        self._refresh = cb

    def add(self, key: str, label: str):
        if key not in self._steps:
            self._steps[key] = Step(key, label)
            self._changed()

    def start(self, key: str, detail: str = ""):
        self._set(key, "running", detail)

    def complete(self, key: str, detail: str = ""):
        self._set(key, "done", detail)

    def error(self, key: str, detail: str = ""):
        self._set(key, "error", detail)

    def skip(self, key: str, detail: str = ""):
        self._set(key, "skipped", detail)

    def status_of(self, key: str) -> Optional[str]:
        step = self._steps.get(key)
        return step.status if step else None

    def _set(self, key: str, status: str, detail: str):
        # unknown keys become ad-hoc steps labelled by their key
        step = self._steps.setdefault(key, Step(key, key))
        step.status = status
        if detail:
            step.detail = detail
        self._changed()

    def _changed(self):
        if self._refresh:
            self._refresh()

    def render(self) -> Tree:
        tree = Tree(f"[cyan]{self.title}[/cyan]", guide_style="grey50")
        for step in self._steps.values():
            tree.add(step.markup())
        return tree


def show_banner():
    """Print the banner and tagline, centred."""
    styled = Text()
    for i, line in enumerate(BANNER.strip().splitlines()):
        styled.append(line + "\n", style=BANNER_COLORS[i % len(BANNER_COLORS)])
    console.print(Align.center(styled))
    console.print(Align.center(Text(TAGLINE, style="italic bright_yellow")))
    console.print()


_KEY_ACTIONS = {
    readchar.key.UP: "up",
    readchar.key.CTRL_P: "up",
    readchar.key.DOWN: "down",
    readchar.key.CTRL_N: "down",
    readchar.key.ENTER: "enter",
    readchar.key.ESC: "escape",
}


def get_key() -> str:
    """Read one keypress and map navigation keys to 'up', 'down', 'enter' or 'escape'."""
    key = readchar.readkey()
    if key == readchar.key.CTRL_C:
        raise KeyboardInterrupt
    return _KEY_ACTIONS.get(key, key)


def _selection_panel(options: Dict[str, str], keys: List[str], index: int, prompt_text: str) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="left", width=3)
    table.add_column(style="white", justify="left")
    for i, key in enumerate(keys):
        table.add_row("▶" if i == index else " ", f"[cyan]{key}[/cyan] [dim]({options[key]})[/dim]")
    table.add_row("", "")
    table.add_row("", "[dim]Use ↑/↓ to navigate, Enter to select, Esc to cancel[/dim]")
    return Panel(table, title=f"[bold]{prompt_text}[/bold]", border_style="cyan", padding=(1, 2))


def select_with_arrows(options: Dict[str, str], prompt_text: str = "Select an option", default_key: Optional[str] = None) -> str:
    """Let the user pick one of options (key -> description) with the arrow keys.

    Esc or Ctrl+C cancels the command with exit code 1.
    """
    keys = list(options)
    index = keys.index(default_key) if default_key in keys else 0

    console.print()
    with Live(_selection_panel(options, keys, index, prompt_text), console=console, transient=True, auto_refresh=False) as live:
        while True:
            try:
                action = get_key()
            except KeyboardInterrupt:
                action = "escape"

            if action == "enter":
                return keys[index]
            if action == "escape":
                console.print("\n[yellow]Selection cancelled[/yellow]")
                raise typer.Exit(1)
            if action == "up":
                index = (index - 1) % len(keys)
            elif action == "down":
                index = (index + 1) % len(keys)
            live.update(_selection_panel(options, keys, index, prompt_text), refresh=True)


def error_panel(message: str, title: str = "Error") -> Panel:
    return Panel(message, title=f"[red]{title}[/red]", border_style="red", padding=(1, 2))
