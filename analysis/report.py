"""Self-contained HTML report builder shared by the analysis scripts.

A report is an ordered list of sections (tables, figures, free text). Tables are
rendered with great_tables via make_gt(); figures are PNG files embedded as
base64 so the resulting HTML file has no external dependencies.

Usage:
    report = ReportBuilder(title="Network Report", dataset="lazega")
    report.add(TableSection(id="summary", title="Summary", html=make_gt(df, title="...")))
    report.add(FigureSection.from_file("fig-layout", "Layout", plots_dir / "layout.png"))
    report.write(run_dir / "network_report.html")
"""

from __future__ import annotations

import base64
import html as html_lib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import polars as pl
from great_tables import GT

_NUMBER_FORMAT = re.compile(r"^(,)?\.(\d+)([f%e])$")


@dataclass(frozen=True)
class TableSection:
    id: str
    title: str
    html: str
    caption: str | None = None

    def render(self) -> str:
        caption = f'<p class="caption">{html_lib.escape(self.caption)}</p>' if self.caption else ""
        return f'<div class="table-wrap">{self.html}</div>{caption}'


@dataclass(frozen=True)
class FigureSection:
    id: str
    title: str
    image_b64: str
    caption: str | None = None

    @classmethod
    def from_file(
        cls,
        id: str,
        title: str,
        path: Path,
        caption: str | None = None,
    ) -> FigureSection:
        """Embed a PNG from disk."""
        data = base64.b64encode(Path(path).read_bytes()).decode("ascii")
        return cls(id=id, title=title, image_b64=data, caption=caption)

    def render(self) -> str:
        caption = f'<p class="caption">{html_lib.escape(self.caption)}</p>' if self.caption else ""
        return (
            f'<img src="data:image/png;base64,{self.image_b64}" '
            f'alt="{html_lib.escape(self.title)}">{caption}'
        )


@dataclass(frozen=True)
class TextSection:
    id: str
    title: str
    html: str

    def render(self) -> str:
        return self.html


Section = TableSection | FigureSection | TextSection


def make_gt(
    df: pl.DataFrame,
    title: str,
    subtitle: str | None = None,
    column_labels: dict[str, str] | None = None,
    number_formats: dict[str, str] | None = None,
    source_note: str | None = None,
) -> str:
    """Render a polars DataFrame as a great_tables HTML fragment.

    number_formats maps column -> format spec: ".4f" (fixed decimals),
    ".1%" (percent), ".2e" (scientific), ",.0f" (grouped thousands).
    Columns missing from df are ignored so callers can share label dicts.
    """
    gt = GT(df).tab_header(title=title, subtitle=subtitle)

    if column_labels:
        labels = {k: v for k, v in column_labels.items() if k in df.columns}
        if labels:
            gt = gt.cols_label(**labels)

    for col, spec in (number_formats or {}).items():
        if col not in df.columns:
            continue
        m = _NUMBER_FORMAT.match(spec)
        if m is None:
            msg = f"Unsupported number format {spec!r} for column {col!r}"
            raise ValueError(msg)
        grouped, decimals, kind = m.group(1) is not None, int(m.group(2)), m.group(3)
        if kind == "%":
            gt = gt.fmt_percent(columns=col, decimals=decimals)
        elif kind == "e":
            gt = gt.fmt_scientific(columns=col, decimals=decimals)
        else:
            gt = gt.fmt_number(columns=col, decimals=decimals, use_seps=grouped)

    if source_note:
        gt = gt.tab_source_note(source_note=source_note)

    return gt.as_raw_html()


_CSS = """
body { font-family: -apple-system, "Segoe UI", Helvetica, Arial, sans-serif;
       max-width: 1100px; margin: 2em auto; padding: 0 1em; color: #222; line-height: 1.5; }
h1 { border-bottom: 3px solid #333; padding-bottom: .3em; }
h2 { border-bottom: 1px solid #ccc; padding-bottom: .2em; margin-top: 2.2em; }
nav ol { columns: 2; font-size: .9em; }
img { max-width: 100%; border: 1px solid #eee; }
.caption { color: #555; font-size: .9em; font-style: italic; }
.meta { color: #777; font-size: .85em; }
.table-wrap { overflow-x: auto; }
.warning { background: #fff4e5; border-left: 4px solid #e8a33d; padding: .6em 1em; }
"""


class ReportBuilder:
    """Collects sections and writes them out as one HTML document."""

    def __init__(self, title: str, dataset: str = "", git_hash: str = "unknown") -> None:
        self.title = title
        self.dataset = dataset
        self.git_hash = git_hash
        self._sections: list[Section] = []

    def add(self, section: Section) -> None:
        if any(s.id == section.id for s in self._sections):
            msg = f"Duplicate report section id: {section.id}"
            raise ValueError(msg)
        self._sections.append(section)

    @property
    def has_sections(self) -> bool:
        return bool(self._sections)

    @property
    def section_ids(self) -> list[str]:
        return [s.id for s in self._sections]

    def render(self) -> str:
        generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        toc = "\n".join(
            f'<li><a href="#{s.id}">{html_lib.escape(s.title)}</a></li>' for s in self._sections
        )
        body = "\n".join(
            f'<section id="{s.id}"><h2>{html_lib.escape(s.title)}</h2>\n{s.render()}</section>'
            for s in self._sections
        )
        title = html_lib.escape(self.title)
        dataset = f": {html_lib.escape(self.dataset)}" if self.dataset else ""
        return (
            "<!DOCTYPE html>\n"
            '<html lang="en"><head><meta charset="utf-8">'
            f"<title>{title}{dataset}</title><style>{_CSS}</style></head><body>\n"
            f"<h1>{title}{dataset}</h1>\n"
            f'<p class="meta">Generated {generated} · '
            f"git {html_lib.escape(self.git_hash[:10])}</p>\n"
            f"<nav><h2>Contents</h2><ol>{toc}</ol></nav>\n"
            f"{body}\n</body></html>\n"
        )

    def write(self, path: Path) -> None:
        path.write_text(self.render(), encoding="utf-8")
        print(f"  Report: {path}")
