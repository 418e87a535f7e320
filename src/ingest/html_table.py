from __future__ import annotations

from dataclasses import dataclass, field
from html.parser import HTMLParser


@dataclass(slots=True)
class TableLink:
    href: str
    onclick: str
    text: str


@dataclass(slots=True)
class TableCell:
    text: str = ""
    links: list[TableLink] = field(default_factory=list)
    spans: dict[str, str] = field(default_factory=dict)

    @property
    def link_text(self) -> str:
        for link in self.links:
            if link.text:
                return link.text
        return ""


class _TableRowCollector(HTMLParser):
    """Collects `<td>` cells of every table row, with anchors and classed spans per cell."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.rows: list[list[TableCell]] = []
        self._table_depth = 0
        self._row: list[TableCell] | None = None
        self._cell: TableCell | None = None
        self._cell_parts: list[str] = []
        self._link: dict[str, str] | None = None
        self._link_parts: list[str] = []
        self._span_class: str | None = None
        self._span_parts: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag = tag.lower()
        attr_map = {key.lower(): value or "" for key, value in attrs}
        if tag == "table":
            self._table_depth += 1
        elif tag == "tr" and self._table_depth:
            self._row = []
        elif tag == "td" and self._row is not None:
            self._cell = TableCell()
            self._cell_parts = []
        elif self._cell is None:
            return
        elif tag == "br":
            self._cell_parts.append(" ")
        elif tag == "a":
            self._link = {"href": attr_map.get("href", ""), "onclick": attr_map.get("onclick", "")}
            self._link_parts = []
        elif tag == "span":
            self._span_class = attr_map.get("class", "").strip() or None
            self._span_parts = []

    def handle_data(self, data: str) -> None:
        if self._cell is None:
            return
        self._cell_parts.append(data)
        if self._link is not None:
            self._link_parts.append(data)
        if self._span_class is not None:
            self._span_parts.append(data)

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if tag == "a" and self._cell is not None and self._link is not None:
            self._cell.links.append(
                TableLink(
                    href=self._link["href"],
                    onclick=self._link["onclick"],
                    text=_collapse(self._link_parts),
                )
            )
            self._link = None
        elif tag == "span" and self._cell is not None and self._span_class is not None:
            self._cell.spans[self._span_class] = _collapse(self._span_parts)
            self._span_class = None
        elif tag == "td" and self._cell is not None and self._row is not None:
            self._cell.text = _collapse(self._cell_parts)
            self._row.append(self._cell)
            self._cell = None
        elif tag == "tr" and self._row is not None:
            self.rows.append(self._row)
            self._row = None
        elif tag == "table" and self._table_depth:
            self._table_depth -= 1


def _collapse(parts: list[str]) -> str:
    return " ".join("".join(parts).split())


def parse_table_rows(html: str) -> list[list[TableCell]]:
    collector = _TableRowCollector()
    collector.feed(html)
    collector.close()
    return collector.rows
