"""Rich-based console output utilities."""

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

from orchestra import __version__

custom_theme = Theme(
    {
        "error": "bold red",
        "warning": "bold yellow",
        "info": "bold blue",
        "header": "bold magenta",
        "highlight": "bold white",
    }
)

# Global console instances
console = Console(theme=custom_theme)
console_err = Console(theme=custom_theme, stderr=True)


def print_error(message: str) -> None:
    """Print error message in red.

    Args:
        message: Error message to display
    """
    from orchestra.utils.logging import log_message

    console_err.print(f"[error][[ERROR]][/error] [red]{message}[/red]")
    log_message(f"ERROR: {message}")


def print_warning(message: str) -> None:
    """Print warning message in yellow."""
    from orchestra.utils.logging import log_message

    console.print(f"[warning][[WARNING]][/warning] [yellow]{message}[/yellow]")
    log_message(f"WARNING: {message}")


def print_info(message: str) -> None:
    """Print info message in blue/cyan."""
    from orchestra.utils.logging import log_message

    console.print(f"[info][[INFO]][/info] [cyan]{message}[/cyan]")
    log_message(f"INFO: {message}")


def print_header(title: str) -> None:
    """Print section header in magenta."""
    console.print()
    console.print(f"[header]=== {title} ===[/header]")
    console.print()


# Tailwind color families used by TicketPalette, mapped to rich colors
PALETTE_RICH_COLORS = {
    "emerald": "green",
    "green": "green",
    "yellow": "yellow",
    "amber": "yellow",
    "orange": "dark_orange",
    "red": "red",
    "purple": "magenta",
    "violet": "magenta",
    "blue": "blue",
    "sky": "cyan",
    "gray": "grey50",
    "slate": "grey50",
}


def palette_style(color: str) -> str:
    """Translate palette classes such as 'bg-red-500/20 text-red-400' to a rich style.

    The text class decides the color. Unknown or missing colors yield an
    empty style so the label prints unstyled.
    """
    for token in color.split():
        if token.startswith("text-"):
            family = token.removeprefix("text-").split("-", 1)[0]
            return PALETTE_RICH_COLORS.get(family, "")
    return ""


def styled_label(name: str, color: str) -> str:
    """Return console markup for a status or priority label."""
    style = palette_style(color)
    text = escape(name)
    return f"[{style}]{text}[/{style}]" if style else text


def show_version() -> None:
    """Display version information."""
    console.print(f"[bold]ORCHESTRA[/bold] v{__version__}")


__all__ = [
    "console",
    "console_err",
    "custom_theme",
    "print_error",
    "print_warning",
    "print_info",
    "print_header",
    "palette_style",
    "show_version",
    "styled_label",
]
