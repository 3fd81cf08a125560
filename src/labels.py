# src/labels.py
"""
Display labels for variables and category codes.

The base lookup comes from the external label table (variable, code,
group_label, value_label). Sections can layer bespoke labels on top with
`with_overrides`; overrides always win over the base table. A missing label
never fails a render: the raw code is shown instead and a warning is raised so
the gap is visible.
"""
from __future__ import annotations

from typing import Dict, Mapping, Optional
import warnings

import pandas as pd

from helpers import _norm_code


class LabelResolver:
    """
    Immutable variable/value label lookup.

    Parameters
    ----------
    values : Mapping[str, Mapping[str, str]]
        variable -> {normalized code -> value label}.
    variables : Mapping[str, str]
        variable -> display name (category group label).
    """

    def __init__(self, values: Optional[Mapping] = None, variables: Optional[Mapping] = None):
        self._values: Dict[str, Dict[str, str]] = {
            str(var): {_norm_code(k): str(v) for k, v in codes.items()}
            for var, codes in (values or {}).items()
        }
        self._variables: Dict[str, str] = {str(k): str(v) for k, v in (variables or {}).items()}

    @classmethod
    def from_table(cls, table: pd.DataFrame) -> "LabelResolver":
        """
        Build from a tidy label table with columns variable, code,
        group_label, value_label (see data_loaders.load_label_table).
        """
        values: Dict[str, Dict[str, str]] = {}
        variables: Dict[str, str] = {}
        for var, code, group, label in table[["variable", "code", "group_label", "value_label"]].itertuples(index=False):
            var = str(var)
            if label != "" and pd.notna(label):
                values.setdefault(var, {})[_norm_code(code)] = str(label)
            if group != "" and pd.notna(group) and var not in variables:
                variables[var] = str(group)
        return cls(values, variables)

    def with_overrides(self, values: Optional[Mapping] = None, variables: Optional[Mapping] = None) -> "LabelResolver":
        """Return a new resolver where the given labels take precedence."""
        merged_values = {var: dict(codes) for var, codes in self._values.items()}
        for var, codes in (values or {}).items():
            merged_values.setdefault(str(var), {}).update({_norm_code(k): str(v) for k, v in codes.items()})
        merged_variables = dict(self._variables)
        merged_variables.update({str(k): str(v) for k, v in (variables or {}).items()})
        return LabelResolver(merged_values, merged_variables)

    def has_variable(self, variable: str) -> bool:
        return str(variable) in self._values

    def resolve(self, variable: str, code) -> str:
        """
        Value label for `code` of `variable`; falls back to the raw code.

        Variables absent from the table are taken as already labelled and pass
        through silently; a code missing from a known variable is warned about.
        """
        key = _norm_code(code)
        codes = self._values.get(str(variable))
        if codes is None:
            return key
        label = codes.get(key)
        if label is None:
            warnings.warn(f"No label for {variable}={key!r}; showing the raw code.")
            return key
        return label

    def variable_label(self, variable: str) -> str:
        """Display name of `variable`; falls back to the variable name."""
        return self._variables.get(str(variable), str(variable))

    def label_values(self, variable: str, s: pd.Series) -> pd.Series:
        """
        Map a Series of codes of one variable to labels, keeping order.
        Each missing label is reported once.
        """
        cache: Dict[str, str] = {}

        def _one(v):
            if pd.isna(v):
                return v
            k = _norm_code(v)
            if k not in cache:
                cache[k] = self.resolve(variable, v)
            return cache[k]

        return s.astype(object).map(_one)

    def label_frame(
        self,
        df: pd.DataFrame,
        value_col: str = "value",
        var_col: Optional[str] = "var",
        variable: Optional[str] = None,
        fields: Optional[Mapping[str, str]] = None,
    ) -> pd.DataFrame:
        """
        Copy of an aggregation result with codes replaced by labels.

        In a long table (with `var_col`) each row's value is resolved against
        its own variable, found through `fields` (display name -> source
        field) when the table carries display names; otherwise all values
        belong to `variable`.
        """
        out = df.copy()
        if out.empty:
            return out
        fields = dict(fields or {})
        if var_col and var_col in out.columns:
            vars_ = out[var_col].astype(str)
            out[value_col] = [
                self.resolve(fields.get(v, v), c) if pd.notna(c) else c
                for v, c in zip(vars_, out[value_col])
            ]
            out[var_col] = [self.variable_label(v) for v in vars_]
        else:
            out[value_col] = self.label_values(variable or value_col, out[value_col])
        return out

    def label_columns(self, df: pd.DataFrame, variable: str, prefix: str = "n_") -> pd.DataFrame:
        """
        Rename split-value columns (and their 'n_' weight companions) of a
        pivoted result to the value labels of `variable`.
        """
        known = self._values.get(str(variable), {})
        mapping = {}
        for c in df.columns:
            k = str(c)
            if k in known:
                mapping[c] = known[k]
            elif k.startswith(prefix) and k[len(prefix):] in known:
                mapping[c] = f"{prefix}{known[k[len(prefix):]]}"
        return df.rename(columns=mapping)
