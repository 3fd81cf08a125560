# src/aggregation.py
"""
Weighted categorical aggregation over the derived microdata.

Every report table is the same pipeline with different columns:

    filter -> (wide-to-long over several variables) -> group -> sum of design
    weights -> normalize within the enclosing scope -> (long-to-wide over a
    split column)

Population statistics are always weight-sums, never row counts. Proportions
are normalized over every grouping key except the innermost one, so they sum
to 1 within each (split value x variable) scope rather than globally.

Results are plain DataFrames in display order; no number formatting happens
here.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence, Tuple, Union
import warnings

import numpy as np
import pandas as pd

from helpers import natural_order

Where = Union[None, pd.Series, np.ndarray, Callable[[pd.DataFrame], pd.Series]]
VariableList = Sequence[Tuple[str, str]]

RANK_COL = "_rank"


# ----------------------------- small utilities -----------------------------

def _as_list(x) -> list:
    if x is None:
        return []
    if isinstance(x, str):
        return [x]
    return list(x)


def _apply_where(df: pd.DataFrame, where: Where) -> pd.DataFrame:
    """Return the rows of `df` selected by a mask or a mask-producing callable."""
    if where is None:
        return df
    mask = where(df) if callable(where) else where
    if not isinstance(mask, pd.Series):
        mask = pd.Series(np.asarray(mask), index=df.index)
    mask = mask.reindex(df.index).fillna(False).astype(bool)
    return df.loc[mask]


def _require(df: pd.DataFrame, cols: Iterable[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise KeyError(f"Missing expected columns: {missing}")


def _split_names(values) -> list[str]:
    return [str(v) for v in values]


def _spread(
    long: pd.DataFrame,
    split_by: str,
    index_keys: list[str],
    sort_keys: list[str],
    value_col: str,
    split_values: list,
    fill_value: Optional[float],
    weight_col: Optional[str] = None,
) -> pd.DataFrame:
    """
    Long-to-wide over `split_by`: one `value_col` column per split value
    (named str(value)), and optionally one `n_<value>` column of weight-sums.
    Row order follows `sort_keys`; unobserved cells take `fill_value`.
    """
    carry = [c for c in long.columns if c in index_keys or c == RANK_COL]
    base = long[carry].drop_duplicates(subset=index_keys)
    base = base.sort_values(sort_keys, kind="mergesort").reset_index(drop=True)

    value_names = _split_names(split_values)
    weight_names = [f"n_{v}" for v in value_names]
    for val, vname, wname in zip(split_values, value_names, weight_names):
        part = long.loc[long[split_by] == val, index_keys + [value_col] + ([weight_col] if weight_col else [])]
        part = part.rename(columns={value_col: vname, **({weight_col: wname} if weight_col else {})})
        base = base.merge(part, on=index_keys, how="left")

    if fill_value is not None:
        base[value_names] = base[value_names].fillna(fill_value)
        if weight_col:
            base[weight_names] = base[weight_names].fillna(0.0)

    out_cols = index_keys + value_names + (weight_names if weight_col else [])
    return base[out_cols]


# ------------------------------- wide -> long -------------------------------

def pivot_longer(df: pd.DataFrame, variables: VariableList, keep: Sequence[str] = ()) -> pd.DataFrame:
    """
    Stack several categorical columns into one long table.

    Parameters
    ----------
    df : pd.DataFrame
        Source records.
    variables : Sequence[tuple[str, str]]
        Statically declared (source_field, display_name) pairs.
    keep : Sequence[str]
        Columns carried onto every long row (weight, split, extra keys).

    Returns
    -------
    pd.DataFrame
        Columns: keep..., 'var' (ordered categorical in declaration order),
        'value' (object), and '_rank' (position of the value in its variable's
        natural category order). Rows whose value is missing are dropped.
    """
    keep = list(dict.fromkeys(keep))
    _require(df, keep + [field for field, _ in variables])

    frames = []
    names = []
    for field, name in variables:
        rank = {v: i for i, v in enumerate(natural_order(df[field]))}
        sub = df[keep].copy()
        sub["var"] = name
        sub["value"] = df[field].astype(object)
        sub = sub[sub["value"].notna()]
        sub[RANK_COL] = sub["value"].map(rank)
        frames.append(sub)
        names.append(name)

    if frames:
        long = pd.concat(frames, ignore_index=True)
    else:
        long = pd.DataFrame(columns=keep + ["var", "value", RANK_COL])
    long["var"] = pd.Categorical(long["var"], categories=list(dict.fromkeys(names)), ordered=True)
    return long


# ------------------------------ the aggregator ------------------------------

def weighted_aggregate(
    df: pd.DataFrame,
    group_by: Union[str, Sequence[str]] = (),
    *,
    where: Where = None,
    variables: Optional[VariableList] = None,
    split_by: Optional[str] = None,
    split_order: Optional[Sequence] = None,
    weight_col: str = "weight",
    fill_value: Optional[float] = None,
    keep_weights: bool = False,
    tol: Optional[float] = None,
) -> pd.DataFrame:
    """
    Weighted shares of categories within their enclosing scope.

    Parameters
    ----------
    df : pd.DataFrame
        Derived record set (read only).
    group_by : str | Sequence[str]
        Categorical grouping columns, outermost first. Without `variables` the
        last one is the category whose shares are computed.
    where : mask or callable, optional
        Record filter applied before anything else.
    variables : Sequence[tuple[str, str]], optional
        (source_field, display_name) pairs aggregated in one pass. Rows are
        reshaped long (columns 'var' and 'value') and 'value' becomes the
        innermost key.
    split_by : str, optional
        Column whose values become separate proportion columns.
    split_order : Sequence, optional
        Explicit order (and subset) of split values; defaults to their
        natural order.
    weight_col : str
        Design-weight column.
    fill_value : float, optional
        Value for unobserved (row, split) cells after the pivot; None keeps
        them missing.
    keep_weights : bool
        Also return weight-sums ('weight', or 'n_<split>' after the pivot).
    tol : float, optional
        If given, verify that every scope sums to 1 within `tol`.

    Returns
    -------
    pd.DataFrame
        Without `split_by`: keys..., ['weight'], 'prop'.
        With `split_by`: keys except split..., one column per split value,
        ['n_<split value>'...].

    Raises
    ------
    KeyError
        If a referenced column does not exist.
    ValueError
        If nothing to group by was given, or a scope's weight-sum is not
        strictly positive.
    """
    group_by = _as_list(group_by)
    split = [split_by] if split_by else []
    if not group_by and not variables:
        raise ValueError("weighted_aggregate needs group_by columns or variables")

    _require(df, split + group_by + [weight_col])
    sub = _apply_where(df, where)

    if variables:
        sub = pivot_longer(sub, variables, keep=split + group_by + [weight_col])
        keys = split + ["var"] + group_by + ["value"]
        sort_inner = split + ["var"] + group_by + [RANK_COL]
    else:
        keys = split + group_by
        sort_inner = keys

    sub = sub[sub[weight_col].notna()]
    for k in keys:
        sub = sub[sub[k].notna()]

    # split columns come from the rows that survive the key filter
    index_keys = [k for k in keys if k != split_by]
    if split_by:
        if split_order is not None:
            split_values = list(split_order)
        else:
            split_values = natural_order(sub[split_by]) if len(sub) else []
        value_cols = _split_names(split_values)
        empty_cols = index_keys + value_cols + ([f"n_{v}" for v in value_cols] if keep_weights else [])
    else:
        empty_cols = keys + (["weight"] if keep_weights else []) + ["prop"]

    if sub.empty:
        warnings.warn(f"No records left to aggregate by {keys}; returning an empty table.")
        return pd.DataFrame(columns=empty_cols)

    agg_spec = {"weight": (weight_col, "sum")}
    if variables:
        agg_spec[RANK_COL] = (RANK_COL, "first")
    long = (
        sub.groupby(keys, observed=True, dropna=True, sort=False)
           .agg(**agg_spec)
           .reset_index()
    )
    long = long.sort_values(sort_inner, kind="mergesort").reset_index(drop=True)

    scope = keys[:-1]
    if scope:
        denom = long.groupby(scope, observed=True, sort=False)["weight"].transform("sum")
    else:
        denom = pd.Series(long["weight"].sum(), index=long.index)
    if not (np.isfinite(denom.to_numpy(dtype=float)).all() and (denom > 0).all()):
        raise ValueError(f"Non-positive weight-sum within scope {scope or 'total'}; cannot normalize.")
    long["prop"] = long["weight"] / denom

    if tol is not None:
        check_proportions(long, scope, tol=tol)

    if not split_by:
        cols = keys + (["weight"] if keep_weights else []) + ["prop"]
        return long[cols].reset_index(drop=True)

    sort_wide = [k for k in sort_inner if k != split_by]
    return _spread(
        long, split_by, index_keys, sort_wide, "prop", split_values, fill_value,
        weight_col="weight" if keep_weights else None,
    )


def check_proportions(long: pd.DataFrame, scope: Sequence[str], prop_col: str = "prop", tol: float = 1e-9) -> None:
    """
    Raise if the proportions in `long` do not sum to 1 within each scope.

    Parameters
    ----------
    long : pd.DataFrame
        Long-form aggregation result with a proportion column.
    scope : Sequence[str]
        Columns defining the normalization scope; empty means the whole table.
    """
    if long.empty:
        return
    scope = list(scope)
    if scope:
        sums = long.groupby(scope, observed=True)[prop_col].sum()
    else:
        sums = pd.Series([long[prop_col].sum()])
    bad = sums[(sums - 1.0).abs() > tol]
    if len(bad):
        raise ValueError(f"Proportions do not sum to 1 within {scope or 'total'}: {bad.to_dict()}")


# ----------------------------- post-aggregation -----------------------------

def cumulative_share(
    df: pd.DataFrame,
    column: str,
    *,
    mask: Where = None,
    renormalize: bool = True,
    out_col: str = "cum_prop",
) -> pd.DataFrame:
    """
    Running sum of `column` in row order, restricted to the `mask` rows.

    Rows outside the mask get NaN. With `renormalize` the running sum is
    divided by the subset total, so the last marked row is exactly 1.0;
    otherwise it is the cumulative share of the whole population.
    """
    out = df.copy()
    if mask is None:
        m = pd.Series(True, index=out.index)
    else:
        m = mask(out) if callable(mask) else mask
        if not isinstance(m, pd.Series):
            m = pd.Series(np.asarray(m), index=out.index)
        m = m.reindex(out.index).fillna(False).astype(bool)

    running = out.loc[m, column].astype(float).fillna(0.0).cumsum()
    if renormalize and len(running):
        total = float(running.iloc[-1])
        if not total > 0:
            raise ValueError(f"Cannot renormalize cumulative share of '{column}': subset total is {total}")
        running = running / total
    out[out_col] = np.nan
    out.loc[m, out_col] = running
    return out


def weighted_mean(
    df: pd.DataFrame,
    value_cols: Sequence[Union[str, Tuple[str, str]]],
    *,
    where: Where = None,
    split_by: Optional[str] = None,
    split_order: Optional[Sequence] = None,
    weight_col: str = "weight",
) -> pd.DataFrame:
    """
    Weighted mean of numeric columns, one row per column.

    Parameters
    ----------
    value_cols : Sequence[str | tuple[str, str]]
        Numeric fields, optionally as (source_field, display_name) pairs.
    split_by : str, optional
        Column whose values become separate mean columns.

    Returns
    -------
    pd.DataFrame
        'var' plus 'mean' (no split) or one column per split value.
        Missing values are excluded column by column.
    """
    pairs = [(c, c) if isinstance(c, str) else tuple(c) for c in value_cols]
    split = [split_by] if split_by else []
    _require(df, [f for f, _ in pairs] + split + [weight_col])
    sub = _apply_where(df, where)

    names = list(dict.fromkeys(n for _, n in pairs))
    rows = []
    used = pd.Series(False, index=sub.index)
    for field, name in pairs:
        x = pd.to_numeric(sub[field], errors="coerce")
        w = pd.to_numeric(sub[weight_col], errors="coerce")
        ok = x.notna() & w.notna()
        for c in split:
            ok &= sub[c].notna()
        used |= ok
        if not ok.any():
            continue
        part = pd.DataFrame({"wx": x[ok] * w[ok], "w": w[ok]})
        for c in split:
            part[c] = sub.loc[ok, c]
        if split:
            g = part.groupby(split, observed=True, sort=False)[["wx", "w"]].sum().reset_index()
        else:
            g = pd.DataFrame({"wx": [part["wx"].sum()], "w": [part["w"].sum()]})
        if not (g["w"] > 0).all():
            raise ValueError(f"Non-positive weight-sum for '{field}'; cannot compute a weighted mean.")
        g["mean"] = g["wx"] / g["w"]
        g["var"] = name
        rows.append(g)

    if split_by:
        if split_order is not None:
            split_values = list(split_order)
        else:
            split_values = natural_order(sub.loc[used, split_by]) if used.any() else []
        empty_cols = ["var"] + _split_names(split_values)
    else:
        empty_cols = ["var", "mean"]

    if not rows:
        warnings.warn(f"No records left for weighted means of {[f for f, _ in pairs]}; returning an empty table.")
        return pd.DataFrame(columns=empty_cols)

    long = pd.concat(rows, ignore_index=True)
    long["var"] = pd.Categorical(long["var"], categories=names, ordered=True)
    if not split_by:
        return long.sort_values("var", kind="mergesort")[["var", "mean"]].reset_index(drop=True)
    return _spread(long, split_by, ["var"], ["var"], "mean", split_values, None)
