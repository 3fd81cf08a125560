# ------------------------------------------------------------------------------
# Youth (18-29) vs. other working-age adults: census profile report.
# - Loads the decoded census microdata extract once (RDS / CSV / Parquet).
# - Normalizes missing codes, derives age-group flags and labour-force status
#   (with NEET) once; the derived frame is read-only afterwards.
# - Runs every report section as an independent weighted aggregation.
# - Writes one CSV per section and a single HTML report linking to them.
#
# Usage:
#   python src/main_report.py [path/to/config.yaml]
# ------------------------------------------------------------------------------


from __future__ import annotations
from typing import List, Optional
import os
import sys

from data_loaders import (
    _load_config,
    load_microdata,
    load_label_table,
    normalize_missing,
)
from derived_fields import derive_fields
from helpers import _coerce_list
from labels import LabelResolver
from rendering import write_report
from report_sections import ReportContext, SectionResult, run_sections

# ------------------------------- Config loading -------------------------------
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
CONFIG_PATH = os.path.join(ROOT_DIR, "config.yaml")


def build_context(cfg: dict, paths: dict) -> ReportContext:
    """
    Load, clean and derive the record set, and load the label table.

    A missing label file is not fatal: labels then fall back to raw codes.
    """
    raw = load_microdata(paths["microdata_file"])
    missing_values = _coerce_list(cfg.get("missing_values")) or []
    clean = normalize_missing(raw, missing_values)
    data = derive_fields(clean, cfg)

    n_wa = int(data["is_working_age"].sum())
    n_youth = int(data["is_youth"].sum())
    print(f"[data] Derived fields ready: {n_wa:,} working-age records, {n_youth:,} youth records.")

    label_path = paths["labels_csv"]
    if os.path.exists(label_path):
        labels = LabelResolver.from_table(load_label_table(label_path))
    else:
        print(f"[labels] No label table found (expected at {label_path}); showing raw codes.")
        labels = LabelResolver()
    return ReportContext(data=data, labels=labels, cfg=cfg)


def main(config_path: Optional[str] = None, progress: bool = True) -> List[SectionResult]:
    """
    Run the full report and return the computed sections.
    """
    cfg, PATHS = _load_config(ROOT_DIR, config_path or CONFIG_PATH)
    ctx = build_context(cfg, PATHS)

    rep = cfg.get("report", {})
    keys = _coerce_list(rep.get("sections")) or None
    sections = run_sections(ctx, keys, progress=progress)

    out = write_report(
        sections,
        PATHS["results_dir"],
        title=str(rep.get("title", "Census profile")),
        html_name=str(rep.get("html_name", "report.html")),
        csv_dir=str(rep.get("csv_dir", "csv")),
    )
    print(f"[output] {len(sections)} section(s) written; report saved to {out}")
    return sections


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else None)
