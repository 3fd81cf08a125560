# src/rendering.py
"""
Presentation of aggregation results: formatted HTML tables and CSV exports.

Numbers reach this module unformatted. Percent/currency/count formatting,
row-group headers and the CSV download link are done here only; the CSV
itself always carries the raw, unrounded result columns.
"""
import os
import html

import pandas as pd

DISPLAY_HEADERS = {"var": "Variable", "value": "Category", "prop": "Share", "weight": "Weighted count"}


def _fmt_percent(x):
    return "" if pd.isna(x) else f"{100.0 * float(x):.1f}%"

def _fmt_currency(x):
    return "" if pd.isna(x) else f"${float(x):,.0f}"

def _fmt_count(x):
    return "" if pd.isna(x) else f"{float(x):,.0f}"

FORMATTERS = {
    "percent": _fmt_percent,
    "currency": _fmt_currency,
    "count": _fmt_count,
}


def format_table(df: pd.DataFrame, formats: dict | None = None, default: str | None = None) -> pd.DataFrame:
    """
    String-formatted copy of `df` for display.

    Parameters
    ----------
    formats : dict, optional
        column -> 'percent' | 'currency' | 'count'.
    default : str, optional
        Format applied to every other numeric column.
    """
    formats = dict(formats or {})
    for kind in list(formats.values()) + ([default] if default else []):
        if kind not in FORMATTERS:
            raise ValueError(f"Unknown format '{kind}'; expected one of {sorted(FORMATTERS)}")
    out = df.copy()
    for col in out.columns:
        kind = formats.get(col)
        if kind is None and default and pd.api.types.is_numeric_dtype(out[col]) \
                and not pd.api.types.is_bool_dtype(out[col]):
            kind = default
        if kind is not None:
            out[col] = out[col].map(FORMATTERS[kind])
    return out


def save_section_csv(df: pd.DataFrame, csv_dir: str, key: str) -> str:
    """
    Save one section's result to <csv_dir>/<key>.csv (raw numbers, same columns).
    """
    os.makedirs(csv_dir, exist_ok=True)
    path = os.path.join(csv_dir, f"{key}.csv")
    df.to_csv(path, index=False)
    return path


def table_html(
    df: pd.DataFrame,
    title: str,
    *,
    key: str = "",
    formats: dict | None = None,
    default: str | None = None,
    group_col: str | None = None,
    csv_href: str | None = None,
    headers: dict | None = None,
) -> str:
    """
    HTML fragment for one section: heading, table, CSV download link.

    With `group_col`, rows are indexed by (group_col, next column) so that
    each group gets one spanning header cell.
    """
    parts = [f'<section id="{html.escape(key)}">', f"<h2>{html.escape(title)}</h2>"]
    if df.empty:
        parts.append('<p class="empty">No records matched this section.</p>')
    else:
        shown = format_table(df, formats, default)
        names = {**DISPLAY_HEADERS, **(headers or {})}
        if group_col and group_col in shown.columns and shown.shape[1] > 2:
            pos = list(shown.columns).index(group_col)
            idx = [group_col, shown.columns[pos + 1]]
            shown = shown.set_index(idx)
            shown.index = shown.index.set_names([names.get(str(n), str(n)) for n in idx])
            shown = shown.rename(columns=lambda c: names.get(str(c), str(c)))
            parts.append(shown.to_html(classes="report-table", border=0, na_rep="", sparsify=True))
        else:
            shown = shown.rename(columns=lambda c: names.get(str(c), str(c)))
            parts.append(shown.to_html(classes="report-table", border=0, index=False, na_rep=""))
    if csv_href:
        href = html.escape(csv_href)
        parts.append(f'<p class="download"><a href="{href}" download>Download CSV</a></p>')
    parts.append("</section>")
    return "\n".join(parts)


_CSS = """
body { font-family: sans-serif; margin: 2em; }
table.report-table { border-collapse: collapse; margin-bottom: 0.5em; }
table.report-table th, table.report-table td { padding: 4px 10px; border-bottom: 1px solid #ddd; text-align: right; }
table.report-table th { background: #f3f3f3; }
p.empty { color: #a33; }
"""


def write_report(sections, results_dir: str, *, title: str, html_name: str = "report.html", csv_dir: str = "csv") -> str:
    """
    Write every section's CSV and a single HTML document linking to them.

    Parameters
    ----------
    sections : Iterable
        Objects with attributes key, title, table, formats, default_format,
        group_col and headers (see report_sections.SectionResult).
    results_dir : str
        Output directory; CSVs go to <results_dir>/<csv_dir>/.

    Returns
    -------
    str
        Path of the HTML report.
    """
    os.makedirs(results_dir, exist_ok=True)
    csv_path = os.path.join(results_dir, csv_dir)
    body = []
    for sec in sections:
        save_section_csv(sec.table, csv_path, sec.key)
        body.append(table_html(
            sec.table, sec.title, key=sec.key,
            formats=sec.formats, default=sec.default_format,
            group_col=sec.group_col, headers=sec.headers,
            csv_href=f"{csv_dir}/{sec.key}.csv",
        ))
    doc = (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n<style>{_CSS}</style>\n</head>\n<body>\n"
        f"<h1>{html.escape(title)}</h1>\n" + "\n".join(body) + "\n</body>\n</html>\n"
    )
    out = os.path.join(results_dir, html_name)
    with open(out, "w", encoding="utf-8") as fh:
        fh.write(doc)
    return out
