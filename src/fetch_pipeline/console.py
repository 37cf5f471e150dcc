"""
Console rendering of requests and responses for debug mode.

Uses Rich panels; enabled per client with ``ClientConfig(debug=True)`` or
``FETCH_DEBUG=1``.
"""
import json
from typing import Any, Dict, Mapping, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax

SENSITIVE_HEADERS = ("authorization", "x-api-key", "cookie", "set-cookie")

console = Console(stderr=True)


def mask_sensitive(value: Optional[str], show_chars: int = 15) -> str:
    """
    Mask sensitive values for logging.

    Args:
        value: Value to mask
        show_chars: Number of characters to show before masking

    Returns:
        str: Masked value
    """
    if not value:
        return "<none>"
    if len(value) <= show_chars:
        return "*" * len(value)
    return value[:show_chars] + "***"


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of ``headers`` with credential headers masked."""
    masked = dict(headers)
    for key in masked:
        if key.lower() in SENSITIVE_HEADERS:
            masked[key] = mask_sensitive(masked[key])
    return masked


def format_body(body: Any) -> str:
    """Format body for pretty printing."""
    if body is None:
        return ""
    if isinstance(body, (dict, list)):
        return json.dumps(body, indent=2, ensure_ascii=False, default=str)
    if isinstance(body, bytes):
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError:
            return f"<binary data: {len(body)} bytes>"
    return str(body)


def print_panel(content: str, title: Optional[str] = None) -> None:
    """Print content in a panel."""
    console.print(Panel(content, title=title))


def print_syntax_panel(code: str, lexer: str = "json", title: Optional[str] = None) -> None:
    """Print syntax-highlighted text in a panel."""
    syntax = Syntax(code, lexer, theme="monokai", line_numbers=False)
    console.print(Panel(syntax, title=title, expand=True))


def print_request(method: str, url: str, headers: Mapping[str, str], body: Any = None) -> None:
    """Render an outgoing request."""
    print_panel(f"[bold cyan]{method}[/bold cyan] {url}", title="[bold blue]Request[/bold blue]")
    console.print("[bold]Headers:[/bold]", mask_headers(headers))
    if body is not None:
        print_syntax_panel(format_body(body), title="[bold]Request Body[/bold]")


def print_response(
    url: str,
    status_code: int,
    status_text: str,
    headers: Mapping[str, str],
    body: Any = None,
) -> None:
    """Render a received response."""
    color = "green" if 200 <= status_code < 300 else "red"
    print_panel(
        f"[bold {color}]{status_code}[/bold {color}] {status_text}",
        title=f"[bold blue]Response[/bold blue] ({url})",
    )
    console.print("[bold]Headers:[/bold]", mask_headers(headers))
    if body:
        lexer = "json" if isinstance(body, (dict, list)) else "text"
        print_syntax_panel(format_body(body), lexer=lexer, title=f"[bold]Response Body[/bold] (URL: {url})")
