"""
Rendering functions for branchsource output.

Core functions return data, this module makes it human-readable.
"""

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def render_table(headers: List[str], rows: List[List[Any]], title: Optional[str] = None) -> None:
    """
    Render a generic table with the given headers and rows.

    Args:
        headers: List of column headers
        rows: List of rows, where each row is a list of values
        title: Optional table title
    """
    if not rows:
        console.print("[yellow]No data to display.[/yellow]")
        return

    table = Table(
        title=title,
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta"
    )
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*['' if val is None else str(val) for val in row])

    console.print(table)


def _short(sha: Optional[str]) -> str:
    return (sha or '')[:12]


def render_heads_table(heads: List[Dict[str, Any]], title: Optional[str] = None) -> None:
    """Render scan results: one row per discovered head."""
    rows = []
    for head in heads:
        revision = head.get('revision', {})
        if head.get('kind') == 'pull_request':
            commit = _short(revision.get('head_sha'))
            detail = f"{head.get('source_owner')}:{head.get('source_branch')} -> {head.get('target')}"
            merge = revision.get('merge_sha')
            if merge:
                detail += f" ({_short(merge)})"
        else:
            commit = _short(revision.get('sha'))
            detail = ''
        trusted = "[green]yes[/green]" if head.get('trusted') else "[red]no[/red]"
        rows.append([head.get('kind'), head.get('name'), commit, trusted, detail])

    render_table(['Kind', 'Name', 'Commit', 'Trusted', 'Detail'], rows, title=title)


def render_probe_table(stats: List[Dict[str, Any]], ref: str) -> None:
    rows = [[stat.get('path') or '/', stat.get('type')] for stat in stats]
    render_table(['Path', 'Type'], rows, title=f"Contents at {ref}")


def render_token_table(token: Dict[str, Any]) -> None:
    rows = [[key, value] for key, value in token.items()]
    render_table(['Field', 'Value'], rows, title="Installation token")
