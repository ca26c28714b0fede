"""Coloured console output and confirmation prompts for the CLI."""

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm


def print_success(console: Console, message: str) -> None:
    console.print(f"[bold green]✓[/bold green] {escape(message)}")


def print_error(console: Console, message: str) -> None:
    console.print(f"[bold red]✗[/bold red] {escape(message)}")


def print_warning(console: Console, message: str) -> None:
    console.print(f"[bold yellow]⚠[/bold yellow] {escape(message)}")


def print_info(console: Console, message: str) -> None:
    console.print(f"[cyan]ℹ[/cyan] {escape(message)}")


def prompt_confirm(
    console: Console,
    message: str,
    default: bool = False,
) -> bool:
    """Get yes/no confirmation from user.

    Args:
        console: Rich console for output
        message: Confirmation message to display
        default: Default value if user presses Enter

    Returns:
        True for yes, False for no
    """
    return Confirm.ask(f"  {message}", default=default, console=console)


def confirm_destructive(console: Console, operation: str) -> bool:
    """Warn that an operation cannot be undone and ask to continue."""
    print_warning(console, f"{operation} cannot be undone.")
    return prompt_confirm(console, "Continue?", default=False)
