#!/usr/bin/env python3
"""
UIHandler - Display layer for hc
Commands compute results, UIHandler renders them as rich tables or JSON
"""

from typing import Dict, Any, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hypercerts.atproto.uri import extract_rkey
from hypercerts.core.records import RecordType, RECORD_TYPES, map_str, truncate, format_date, pretty_json

# Context category -> registry entry used for its columns
CATEGORY_TYPES = {
    "measurements": "measurement",
    "attachments": "attachment",
    "evaluations": "evaluation",
    "collections": "collection",
}


class UIHandler:
    """Renders record lists, link context and account info"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    # ===== Plain output =====

    def show_line(self, message: str):
        self.console.print(message, highlight=False)

    def show_json(self, value: Any):
        """JSON on stdout, unstyled so it can be piped"""
        self.console.print(pretty_json(value), markup=False, highlight=False, soft_wrap=True)

    def show_warning(self, message: str):
        self.console.print(f"[yellow]Warning:[/yellow] {escape(message)}", highlight=False)

    # ===== Record lists =====

    def _record_table(self, record_type: RecordType, with_did: bool = False,
                      extra: Optional[List[str]] = None) -> Table:
        table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
        table.add_column("ID", style="cyan", no_wrap=True)
        if with_did:
            table.add_column("DID", style="dim", no_wrap=True)
        for header, _, width in record_type.columns:
            table.add_column(header, max_width=width, overflow="ellipsis")
        for header in extra or []:
            table.add_column(header, justify="right")
        table.add_column("CREATED", style="green", no_wrap=True)
        return table

    def _cells(self, record_type: RecordType, value: Dict[str, Any]) -> List[str]:
        return [escape(truncate(getter(value), width)) or "-" for _, getter, width in record_type.columns]

    def show_records(self, record_type: RecordType, entries: List[Any],
                     extra_columns: Optional[Dict[str, Dict[str, str]]] = None):
        """
        Table of RecordEntry items

        Args:
            record_type: registry entry that supplies the columns
            entries: RecordEntry list from a collection listing
            extra_columns: header -> {uri: cell} for computed columns (e.g. measurement counts)
        """
        if not entries:
            self.console.print(f"[dim](no {record_type.label} records found)[/dim]")
            return

        extra_columns = extra_columns or {}
        table = self._record_table(record_type, extra=list(extra_columns))
        for entry in entries:
            row = [extract_rkey(entry.uri)]
            row += self._cells(record_type, entry.value)
            row += [str(cells.get(entry.uri, "")) for cells in extra_columns.values()]
            row.append(format_date(map_str(entry.value, "createdAt")))
            table.add_row(*row)
        self.console.print(table)

    # ===== Link context =====

    def show_context(self, view, include_bodies: bool = True):
        """Header for the root record, then one section per category"""
        title = map_str(view.record, "title") or extract_rkey(view.uri)
        self.console.print(f"[bold]{escape(title)}[/bold]")
        description = map_str(view.record, "shortDescription")
        if description:
            self.console.print(f"[dim]{escape(description)}[/dim]")
        self.console.print(f"URI: {view.uri}", highlight=False)
        self.console.print()

        for category_view in view.categories:
            self.show_category(category_view, include_bodies)

    def show_category(self, category_view, include_bodies: bool = True):
        name = category_view.category.value
        if category_view.warning:
            self.show_warning(category_view.warning)
            self.console.print()
            return

        self.console.print(f"[bold]{name.capitalize()} ({len(category_view.rows)})[/bold]")
        if not category_view.rows:
            self.console.print("[dim]  (none)[/dim]")
            self.console.print()
            return

        record_type = RECORD_TYPES[CATEGORY_TYPES[name]]
        if include_bodies:
            table = self._record_table(record_type, with_did=True)
        else:
            table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
            table.add_column("ID", style="cyan", no_wrap=True)
            table.add_column("DID", style="dim", no_wrap=True)
            table.add_column("URI", no_wrap=True)

        for row in category_view.rows:
            did_short = truncate(row.did, 10)
            if not include_bodies:
                table.add_row(row.rkey, did_short, row.uri)
            elif row.failed:
                filler = [""] * (len(record_type.columns) - 1) + [""]
                table.add_row(row.rkey, did_short, "[dim](failed to fetch)[/dim]", *filler)
            else:
                table.add_row(row.rkey, did_short, *self._cells(record_type, row.record),
                              format_date(map_str(row.record, "createdAt")))
        self.console.print(table)
        self.console.print()

    # ===== Account =====

    def show_account(self, info: Dict[str, str]):
        table = Table(show_header=False, box=None, pad_edge=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in info.items():
            table.add_row(key, value or "-")
        self.console.print(table)
