# src/helpers.py
"""
General-purpose helpers shared across the report.

This module centralizes reusable utilities that are agnostic to report sections:
- Liberal CSV header detection.
- List/string coercions for config values.
- Code normalization (so 1, 1.0 and "1" compare equal).
- Category ordering utilities (natural order, ordered categoricals, code ranges).

All functions are pure and side-effect free, facilitating reuse and unit testing.

IMPORTANT: This module does not import project-specific modules to avoid circular
dependencies. Callers must supply any configuration defaults they need.
"""
from __future__ import annotations

import numpy as np
import pandas as pd


# ---------------------------------------------------------------------------
# CSV helpers
# ---------------------------------------------------------------------------

def _find_col(df: pd.DataFrame, must_include: list[str]) -> str | None:
    """
    Return the first column name in `df` whose lowercase name contains *all*
    substrings in `must_include`. Used for robust header detection.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with candidate columns.
    must_include : list[str]
        Substrings that must all appear in the lowercase column name.

    Returns
    -------
    str | None
        Original column name or None if not found.
    """
    low = {str(c).lower(): c for c in df.columns}
    for lc, orig in low.items():
        if all(s in lc for s in must_include):
            return orig
    return None


# ---------------------------------------------------------------------------
# List / string coercions for config-like values
# ---------------------------------------------------------------------------

def _coerce_list(x):
    """
    Coerce input to a flat list of strings.

    Rules
    -----
    - If `x` is a list, flatten one level; split any string items on ';' or ','.
    - If `x` is a string, split on ';' or ',' and strip.
    - Otherwise return None (caller should fall back to project defaults).

    Parameters
    ----------
    x : Any

    Returns
    -------
    list[str] | None
    """
    if isinstance(x, list):
        flat: list[str] = []
        for it in x:
            if isinstance(it, list):
                flat.extend(str(s) for s in it)
            elif isinstance(it, str) and (";" in it or "," in it):
                flat.extend(
                    [s.strip() for s in it.replace(",", ";").split(";") if s.strip()]
                )
            else:
                flat.append(str(it))
        return flat
    if isinstance(x, str):
        if ";" in x or "," in x:
            return [s.strip() for s in x.replace(",", ";").split(";") if s.strip()]
        return [x.strip()]
    return None


def _norm_code(x) -> str:
    """
    Normalize a raw category code to a stripped string.

    Integral floats lose their trailing '.0' so that codes read back from CSV
    (where integer columns with gaps become float) still match the label table.

    Examples
    --------
    >>> _norm_code(7.0), _norm_code(" 7 "), _norm_code(True)
    ('7', '7', 'True')
    """
    if isinstance(x, (bool, np.bool_)):
        return str(bool(x))
    if isinstance(x, (float, np.floating)) and np.isfinite(x) and float(x).is_integer():
        return str(int(x))
    return str(x).strip()


# ---------------------------------------------------------------------------
# Category ordering
# ---------------------------------------------------------------------------

def natural_order(s: pd.Series) -> list:
    """
    Return the display order of the non-missing values in `s`.

    - Categorical series keep their declared category order (unused categories
      are dropped).
    - Otherwise values are sorted; mixed, unorderable types fall back to
      first-seen order.
    """
    if isinstance(s.dtype, pd.CategoricalDtype):
        present = set(s.dropna().unique())
        return [c for c in s.cat.categories if c in present]
    vals = list(pd.unique(s.dropna()))
    try:
        return sorted(vals)
    except TypeError:
        return vals


def ordered_categorical(s: pd.Series, order: list) -> pd.Series:
    """
    Cast `s` to an ordered categorical with the given category order.
    Values outside `order` become missing.
    """
    return pd.Series(
        pd.Categorical(s, categories=list(order), ordered=True),
        index=s.index,
        name=s.name,
    )


def in_code_range(codes: pd.Series, bounds) -> pd.Series:
    """
    Boolean mask: `codes` within the inclusive [lo, hi] range given by `bounds`.

    Parameters
    ----------
    codes : pd.Series
        Integer codes.
    bounds : Sequence[int]
        Two-element inclusive range, e.g. [7, 16].

    Returns
    -------
    pd.Series
        Boolean mask aligned to `codes`.
    """
    lo, hi = (int(b) for b in bounds)
    if hi < lo:
        lo, hi = hi, lo
    return codes.between(lo, hi, inclusive="both").fillna(False).astype(bool)
