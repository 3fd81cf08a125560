# src/derived_fields.py
"""
Derived fields computed once on the loaded microdata.

- age_group           -> integer code (fatal if any value is unparsable)
- is_working_age      -> age_group code in the working-age range (default 7-16)
- is_youth            -> age_group code in the youth range (default 7-9, ages 18-29)
- labour_force_status -> Employed / Unemployed / Not in labour force, extracted
                         from the dense labour-force activity string
- labour_force_status_neet -> as above, except Unemployed or Not in labour force
                         people who did not attend school become "NEET"

Every function returns new objects; the input frame is never modified.
"""
from __future__ import annotations

import re
import warnings

import numpy as np
import pandas as pd

from data_loaders import ensure_columns
from helpers import in_code_range, ordered_categorical

_NOT_IN_LF_PAT = re.compile(r"^not in (?:the )?labou?r force$", re.IGNORECASE)


def parse_age_group(s: pd.Series) -> pd.Series:
    """
    Parse age-group codes to integers.

    Accepts ints, integral floats and numeric strings (e.g. "8", " 8 ", "8.0").
    Anything else, missing values included, means the extract does not follow
    the expected schema and aborts the run.

    Raises
    ------
    ValueError
        If any value cannot be parsed to an integer code.
    """
    num = pd.to_numeric(s.astype(str).str.strip(), errors="coerce")
    bad = num.isna() | (num.notna() & (num % 1 != 0))
    if bad.any():
        examples = pd.unique(s[bad].astype(str))[:5].tolist()
        raise ValueError(
            f"Unparsable age_group codes in {int(bad.sum())} record(s); examples: {examples}"
        )
    return num.astype("int64").rename(s.name)


def extract_labour_force_status(s: pd.Series, pattern: str, order: list[str]) -> pd.Series:
    """
    Extract the labour-force status from a denser activity string.

    E.g. "Employed - Worked in reference week" -> "Employed",
    "Not in the labour force - Last worked in 2020" -> "Not in labour force".

    Matching is case-insensitive and anchored by `pattern`, whose first group
    must capture the status. Non-missing strings that do not match become
    missing and are reported with a warning.

    Returns
    -------
    pd.Series
        Ordered categorical with categories `order`.
    """
    text = s.astype("string").str.strip()
    found = text.str.extract(pattern, flags=re.IGNORECASE, expand=False).astype(object)

    canon = {o.lower(): o for o in order}

    def _canonical(v):
        if pd.isna(v):
            return np.nan
        v = " ".join(str(v).split())
        if _NOT_IN_LF_PAT.match(v):
            v = "not in labour force"
        return canon.get(v.lower(), np.nan)

    status = found.map(_canonical).astype(object)
    unmatched = text.notna() & status.isna()
    if unmatched.any():
        examples = pd.unique(text[unmatched].astype(str))[:5].tolist()
        warnings.warn(
            f"{int(unmatched.sum())} labour-force value(s) not recognised; treated as missing. "
            f"Examples: {examples}"
        )
    return ordered_categorical(status.rename(s.name), order)


def is_not_attending(s: pd.Series, not_attending: str) -> pd.Series:
    """
    Boolean mask: school attendance reads "did not attend" (case-insensitive
    prefix match, so "Did not attend school" also counts). Missing -> False.
    """
    key = str(not_attending).strip().lower()
    return (
        s.astype("string").str.strip().str.lower().str.startswith(key)
        .fillna(False)
        .astype(bool)
    )


def neet_status(lfs: pd.Series, not_attending: pd.Series, neet_label: str) -> pd.Series:
    """
    Labour-force status with NEET as a fourth, last category.

    Unemployed / Not in labour force AND not attending school -> NEET;
    everything else (Employed in particular) keeps its status.
    """
    order = list(lfs.cat.categories) + [neet_label]
    out = lfs.astype(object).copy()
    out[lfs.isin(["Unemployed", "Not in labour force"]) & not_attending] = neet_label
    return ordered_categorical(out.rename("labour_force_status_neet"), order)


def derive_fields(df: pd.DataFrame, cfg: dict) -> pd.DataFrame:
    """
    Return a copy of `df` with the derived report fields added.

    Parameters
    ----------
    df : pd.DataFrame
        Raw microdata (missing codes already normalized to NaN).
    cfg : dict
        Configuration with 'columns', 'age_groups' and 'labour_force' blocks.

    Returns
    -------
    pd.DataFrame
        Copy with columns age_group (int), weight (float), is_working_age,
        is_youth, labour_force_status, labour_force_status_neet.

    Raises
    ------
    KeyError
        If a raw column needed for the derived fields is absent.
    ValueError
        If age-group codes are unparsable.
    """
    cols = cfg["columns"]
    lf_cfg = cfg["labour_force"]
    ages = cfg["age_groups"]

    ensure_columns(df, [cols["age_group"], cols["weight"], cols["labour_force"], cols["school_attendance"]])

    out = df.copy()
    age = parse_age_group(out[cols["age_group"]])
    out["age_group"] = age
    out["weight"] = pd.to_numeric(out[cols["weight"]], errors="coerce").astype(float)

    out["is_working_age"] = in_code_range(age, ages["working_age"])
    out["is_youth"] = in_code_range(age, ages["youth"])

    lfs = extract_labour_force_status(out[cols["labour_force"]], lf_cfg["pattern"], lf_cfg["order"])
    not_att = is_not_attending(out[cols["school_attendance"]], lf_cfg["not_attending"])
    out["labour_force_status"] = lfs.rename("labour_force_status")
    out["labour_force_status_neet"] = neet_status(lfs, not_att, lf_cfg["neet_label"])
    if cols["school_attendance"] != "school_attendance":
        out["school_attendance"] = out[cols["school_attendance"]]
    return out
