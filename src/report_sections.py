# src/report_sections.py
"""
Report sections: youth (18-29) vs. other working-age adults.

Each section is a read-only query against the derived record set carried by
a `ReportContext`, built from the weighted aggregator and the label resolver.
Variables that several sections stack into one long table are declared here
as (source_field, display_name) pairs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import warnings

import pandas as pd
from tqdm import tqdm

from aggregation import cumulative_share, weighted_aggregate, weighted_mean
from labels import LabelResolver

# ----------------------------- declared variables -----------------------------

DEMOGRAPHIC_VARIABLES = [
    ("immigration_status", "Immigrant status"),
    ("gender", "Gender"),
    ("indigenous_identity", "Indigenous identity"),
    ("visible_minority", "Visible minority"),
]

NEET_PROFILE_VARIABLES = DEMOGRAPHIC_VARIABLES + [
    ("highest_education", "Highest certificate, diploma or degree"),
]

HOUSING_LOW_INCOME_VARIABLES = [
    ("core_housing_need", "Core housing need"),
    ("low_income_mbm", "Low income (MBM)"),
    ("low_income_lico", "Low income (LICO-AT)"),
    ("low_income_lim", "Low income (LIM-AT)"),
]

INCOME_COMPONENTS = [
    ("total_income", "Total income"),
    ("employment_income", "Employment income"),
    ("government_transfers", "Government transfers"),
    ("after_tax_income", "After-tax income"),
]

YOUTH_SPLIT = [True, False]
YOUTH_LABELS = {
    "is_youth": {True: "Youth (18-29)", False: "Other working-age adults (30-64)"},
    "is_working_age": {True: "Working age (18-64)", False: "Outside working age"},
}


# ------------------------------- data structures -------------------------------

@dataclass(frozen=True)
class ReportContext:
    """Everything a section reads: derived records, labels and configuration."""
    data: pd.DataFrame
    labels: LabelResolver
    cfg: dict


@dataclass
class SectionResult:
    key: str
    title: str
    table: pd.DataFrame
    formats: Dict[str, str] = field(default_factory=dict)
    default_format: Optional[str] = "percent"
    group_col: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


# ---------------------------------- helpers ----------------------------------

def _tol(ctx: ReportContext) -> Optional[float]:
    diag = ctx.cfg.get("diagnostics", {})
    if not diag.get("check_proportions", True):
        return None
    return float(diag.get("proportion_tolerance", 1e-9))

def _labels(ctx: ReportContext) -> LabelResolver:
    return ctx.labels.with_overrides(values=YOUTH_LABELS)

def _present(ctx: ReportContext, variables, section: str) -> list:
    """Declared variables available in the extract; absent ones are reported."""
    have = [(f, n) for f, n in variables if f in ctx.data.columns]
    absent = [f for f, _ in variables if f not in ctx.data.columns]
    if absent:
        warnings.warn(f"[{section}] columns not in the extract, skipped: {absent}")
    return have

def _working_age(d: pd.DataFrame) -> pd.Series:
    return d["is_working_age"]

def _empty(columns) -> pd.DataFrame:
    return pd.DataFrame(columns=list(columns))


# ---------------------------------- sections ----------------------------------

def youth_share(ctx: ReportContext) -> SectionResult:
    """Youth share of the working-age population."""
    t = weighted_aggregate(ctx.data, "is_youth", where=_working_age, keep_weights=True, tol=_tol(ctx))
    t = t.sort_values("is_youth", ascending=False, kind="mergesort").reset_index(drop=True)
    t = _labels(ctx).label_frame(t, value_col="is_youth", var_col=None, variable="is_youth")
    return SectionResult(
        key="youth_share",
        title="Youth and other adults in the working-age population",
        table=t,
        formats={"weight": "count", "prop": "percent"},
        headers={"is_youth": "Population group"},
    )


def age_distribution(ctx: ReportContext) -> SectionResult:
    """
    Working-age population by age group, with the cumulative share across the
    youth bands (renormalized within youth, so the last youth band reads 100%).
    """
    age_var = ctx.cfg["columns"]["age_group"]
    lo, hi = (int(b) for b in ctx.cfg["age_groups"]["youth"])
    t = weighted_aggregate(ctx.data, "age_group", where=_working_age, keep_weights=True, tol=_tol(ctx))
    if not t.empty:
        t = cumulative_share(t, "prop", mask=lambda x: x["age_group"].astype(int).between(lo, hi),
                             out_col="cum_prop_youth")
    else:
        t = _empty(list(t.columns) + ["cum_prop_youth"])
    t = _labels(ctx).label_frame(t, value_col="age_group", var_col=None, variable=age_var)
    return SectionResult(
        key="age_distribution",
        title="Working-age population by age group",
        table=t,
        formats={"weight": "count", "prop": "percent", "cum_prop_youth": "percent"},
        headers={"age_group": "Age group", "cum_prop_youth": "Cumulative share of youth"},
    )


def demographics(ctx: ReportContext) -> SectionResult:
    """Immigrant status, gender, Indigenous identity and visible minority."""
    variables = _present(ctx, DEMOGRAPHIC_VARIABLES, "demographics")
    lab = _labels(ctx)
    if variables:
        t = weighted_aggregate(ctx.data, where=_working_age, variables=variables,
                               split_by="is_youth", split_order=YOUTH_SPLIT, tol=_tol(ctx))
        t = lab.label_frame(t, fields={n: f for f, n in variables})
    else:
        t = _empty(["var", "value"] + [str(v) for v in YOUTH_SPLIT])
    t = lab.label_columns(t, "is_youth")
    return SectionResult(
        key="demographics",
        title="Demographic characteristics",
        table=t,
        group_col="var",
    )


def labour_force(ctx: ReportContext) -> SectionResult:
    """Labour force status, with NEET separated out, youth vs. other adults."""
    t = weighted_aggregate(ctx.data, "labour_force_status_neet", where=_working_age,
                           split_by="is_youth", split_order=YOUTH_SPLIT, tol=_tol(ctx))
    t["labour_force_status_neet"] = t["labour_force_status_neet"].astype(object)
    t = _labels(ctx).label_columns(t, "is_youth")
    return SectionResult(
        key="labour_force",
        title="Labour force status (including NEET)",
        table=t,
        headers={"labour_force_status_neet": "Labour force status"},
    )


def labour_force_by_age(ctx: ReportContext) -> SectionResult:
    """Labour force status within each working-age age group."""
    age_var = ctx.cfg["columns"]["age_group"]
    t = weighted_aggregate(ctx.data, "labour_force_status", where=_working_age,
                           split_by="age_group", fill_value=0.0, tol=_tol(ctx))
    t["labour_force_status"] = t["labour_force_status"].astype(object)
    t = _labels(ctx).label_columns(t, age_var)
    return SectionResult(
        key="labour_force_by_age",
        title="Labour force status by age group",
        table=t,
        headers={"labour_force_status": "Labour force status"},
    )


def school_attendance(ctx: ReportContext) -> SectionResult:
    """School attendance, youth vs. other adults."""
    att_var = ctx.cfg["columns"]["school_attendance"]
    lab = _labels(ctx)
    t = weighted_aggregate(ctx.data, "school_attendance", where=_working_age,
                           split_by="is_youth", split_order=YOUTH_SPLIT, tol=_tol(ctx))
    t = lab.label_frame(t, value_col="school_attendance", var_col=None, variable=att_var)
    t = lab.label_columns(t, "is_youth")
    return SectionResult(
        key="school_attendance",
        title="School attendance",
        table=t,
        headers={"school_attendance": "School attendance"},
    )


def neet_profile(ctx: ReportContext) -> SectionResult:
    """Who NEET youth are: demographics and education of the NEET group."""
    neet = ctx.cfg["labour_force"]["neet_label"]
    variables = _present(ctx, NEET_PROFILE_VARIABLES, "neet_profile")
    if variables:
        t = weighted_aggregate(
            ctx.data,
            where=lambda d: d["is_youth"] & (d["labour_force_status_neet"] == neet),
            variables=variables, keep_weights=True, tol=_tol(ctx),
        )
        t = _labels(ctx).label_frame(t, fields={n: f for f, n in variables})
    else:
        t = _empty(["var", "value", "weight", "prop"])
    return SectionResult(
        key="neet_profile",
        title="Profile of NEET youth",
        table=t,
        formats={"weight": "count", "prop": "percent"},
        group_col="var",
    )


def income(ctx: ReportContext) -> SectionResult:
    """Average income components (weighted means), youth vs. other adults."""
    components = _present(ctx, INCOME_COMPONENTS, "income")
    if components:
        t = weighted_mean(ctx.data, components, where=_working_age,
                          split_by="is_youth", split_order=YOUTH_SPLIT)
        t["var"] = t["var"].astype(object)
    else:
        t = _empty(["var"] + [str(v) for v in YOUTH_SPLIT])
    t = _labels(ctx).label_columns(t, "is_youth")
    return SectionResult(
        key="income",
        title="Average income by component",
        table=t,
        default_format="currency",
        headers={"var": "Income component"},
    )


def housing_low_income(ctx: ReportContext) -> SectionResult:
    """Core housing need and the MBM / LICO / LIM low-income indicators."""
    variables = _present(ctx, HOUSING_LOW_INCOME_VARIABLES, "housing_low_income")
    lab = _labels(ctx)
    if variables:
        t = weighted_aggregate(ctx.data, where=_working_age, variables=variables,
                               split_by="is_youth", split_order=YOUTH_SPLIT, tol=_tol(ctx))
        t = lab.label_frame(t, fields={n: f for f, n in variables})
    else:
        t = _empty(["var", "value"] + [str(v) for v in YOUTH_SPLIT])
    t = lab.label_columns(t, "is_youth")
    return SectionResult(
        key="housing_low_income",
        title="Housing need and low income",
        table=t,
        group_col="var",
    )


# ---------------------------------- registry ----------------------------------

SECTIONS: Dict[str, Callable[[ReportContext], SectionResult]] = {
    "youth_share": youth_share,
    "age_distribution": age_distribution,
    "demographics": demographics,
    "labour_force": labour_force,
    "labour_force_by_age": labour_force_by_age,
    "school_attendance": school_attendance,
    "neet_profile": neet_profile,
    "income": income,
    "housing_low_income": housing_low_income,
}


def run_sections(ctx: ReportContext, keys: Optional[List[str]] = None, progress: bool = True) -> List[SectionResult]:
    """
    Run the requested sections (all, in report order, when `keys` is empty).

    Raises
    ------
    KeyError
        For an unknown section key.
    """
    keys = list(keys) if keys else list(SECTIONS)
    unknown = [k for k in keys if k not in SECTIONS]
    if unknown:
        raise KeyError(f"Unknown report sections: {unknown}; expected any of {list(SECTIONS)}")

    results = []
    for key in tqdm(keys, desc="Report sections", unit="section", disable=not progress):
        res = SECTIONS[key](ctx)
        if res.table.empty:
            print(f"[report] Section '{key}' has no matching records; rendering an empty table.")
        results.append(res)
    return results
