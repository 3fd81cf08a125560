# src/data_loaders.py
import os
import yaml
import pyreadr
import pandas as pd
import numpy as np

from helpers import _find_col, _norm_code


def return_default_config():
    """
    Returns the default configuration dictionary
    """
    return {
        "paths": {
            "data_dir": "./data",
            "microdata_file": "./data/census_pumf_individuals.rds",
            "labels_csv": "./data/labels.csv",
            "results_dir": "./results",
        },
        "columns": {
            "age_group": "age_group",
            "weight": "weight",
            "labour_force": "labour_force_status",
            "school_attendance": "school_attendance",
        },
        "age_groups": {
            "working_age": [7, 16],
            "youth": [7, 9],
        },
        "labour_force": {
            "order": ["Employed", "Unemployed", "Not in labour force"],
            "neet_label": "NEET",
            "not_attending": "did not attend",
            "pattern": r"^\s*(employed|unemployed|not in (?:the )?labou?r force)",
        },
        "missing_values": ["Not available", "Not applicable", "NA", ""],
        "report": {
            "title": "Youth (18-29) and other working-age adults: census profile",
            "html_name": "report.html",
            "csv_dir": "csv",
            "sections": [],
        },
        "diagnostics": {
            "proportion_tolerance": 1e-9,
            "check_proportions": True,
        },
    }

def _resolve(ROOT_DIR, p):
    """
    Resolve path p relative to ROOT_DIR if not absolute.
    """
    return os.path.abspath(os.path.join(ROOT_DIR, p))

def _deep_merge(dst, src):
    """
    Recursively merge src into dst
    """
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v

def _load_config(ROOT_DIR: str, path: str):
    """
    Load YAML config if present; otherwise use defaults for both config and paths.
    Returns (cfg, PATHS)
    """
    cfg = return_default_config()
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as fh:
            user = yaml.safe_load(fh) or {}
        _deep_merge(cfg, user)
    else:
        print(f"[config] No config file at {path}; using built-in defaults.")

    PATHS = {
        "data_dir": _resolve(ROOT_DIR, cfg["paths"]["data_dir"]),
        "microdata_file": _resolve(ROOT_DIR, cfg["paths"]["microdata_file"]),
        "labels_csv": _resolve(ROOT_DIR, cfg["paths"]["labels_csv"]),
        "results_dir": _resolve(ROOT_DIR, cfg["paths"]["results_dir"]),
    }
    return cfg, PATHS

# ------------------------------- microdata ---------------------------------

def read_rds_file(file_path: str) -> pd.DataFrame:
    """
    Reads an RDS file and returns its contents as a pandas DataFrame.
    """
    try:
        result = pyreadr.read_r(file_path)
        return result[None]
    except Exception as e:
        raise RuntimeError(f"Failed to read {file_path}: {e}")

def load_microdata(file_path: str) -> pd.DataFrame:
    """
    Load the decoded census microdata extract.

    Supported formats are chosen by suffix: ``.rds`` (via pyreadr), ``.csv``
    and ``.parquet``. A missing file aborts the run.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")
    ext = os.path.splitext(file_path)[1].lower()
    if ext == ".rds":
        df = read_rds_file(file_path)
    elif ext == ".csv":
        df = pd.read_csv(file_path, low_memory=False)
    elif ext == ".parquet":
        df = pd.read_parquet(file_path)
    else:
        raise ValueError(f"Unsupported microdata format '{ext}' for {file_path}")
    print(f"[data] Loaded {len(df):,} records x {df.shape[1]} columns from {file_path}")
    return df

def ensure_columns(df: pd.DataFrame, required) -> None:
    """Raise an error if the DataFrame lacks any of the required columns."""
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise KeyError(f"Missing expected columns: {missing}")

def normalize_missing(df: pd.DataFrame, missing_values) -> pd.DataFrame:
    """
    Replace configured 'missing' codes with NaN on a copy of `df`.

    Comparison is on normalized strings, so a configured "99" also catches
    numeric 99 and 99.0. The weight column is never touched by callers because
    weights are numeric and never carry missing codes.
    """
    df = df.copy()
    if not missing_values:
        return df
    miss = {_norm_code(v) for v in missing_values}
    for col in df.columns:
        s = df[col]
        if isinstance(s.dtype, pd.CategoricalDtype):
            drop = [c for c in s.cat.categories if _norm_code(c) in miss]
            if drop:
                df[col] = s.cat.remove_categories(drop)
            continue
        if pd.api.types.is_bool_dtype(s):
            continue
        mask = s.notna() & s.map(lambda v: _norm_code(v) in miss)
        if mask.any():
            df[col] = s.mask(mask.astype(bool), np.nan)
    return df

# ------------------------------- label table -------------------------------

def load_label_table(file_path: str) -> pd.DataFrame:
    """
    Read the external variable/value label table.

    Column detection is liberal:
    - variable column: 'variable' or any column containing 'var'.
    - code column: 'code' or any column containing 'code'/'value' but not 'label'.
    - group label: any column containing both 'group' and 'label' (or 'category').
    - value label: any column containing both 'value' and 'label' (or 'label').

    Returns
    -------
    pd.DataFrame
        Columns: variable, code, group_label, value_label (all strings;
        group_label / value_label may be empty).
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")
    raw = pd.read_csv(file_path, dtype=str, keep_default_na=False)

    var_col = _find_col(raw, ["variable"]) or _find_col(raw, ["var"])
    code_col = _find_col(raw, ["code"])
    if code_col is None:
        cands = [c for c in raw.columns if "value" in c.lower() and "label" not in c.lower()]
        code_col = cands[0] if cands else None
    group_col = _find_col(raw, ["group", "label"]) or _find_col(raw, ["category"])
    value_col = _find_col(raw, ["value", "label"])
    if value_col is None:
        cands = [c for c in raw.columns if "label" in c.lower() and c != group_col]
        value_col = cands[0] if cands else None

    if var_col is None or code_col is None:
        raise KeyError(
            f"Label table {file_path} must include variable and code columns; found {list(raw.columns)}"
        )

    out = pd.DataFrame({
        "variable": raw[var_col].astype(str).str.strip(),
        "code": raw[code_col].map(_norm_code),
        "group_label": raw[group_col].astype(str).str.strip() if group_col else "",
        "value_label": raw[value_col].astype(str).str.strip() if value_col else "",
    })
    out = out[out["variable"] != ""].reset_index(drop=True)
    print(f"[labels] Loaded {len(out):,} label rows for {out['variable'].nunique()} variables from {file_path}")
    return out
