# tests/test_derived_fields.py
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from derived_fields import (
    parse_age_group,
    extract_labour_force_status,
    is_not_attending,
    neet_status,
    derive_fields,
)
from data_loaders import return_default_config

ORDER = ["Employed", "Unemployed", "Not in labour force"]
PATTERN = return_default_config()["labour_force"]["pattern"]


@pytest.fixture
def cfg():
    return return_default_config()


@pytest.fixture
def raw():
    return pd.DataFrame({
        "age_group": [7, 8, 9, 10, 16, 17, 5, 8],
        "weight": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0],
        "labour_force_status": [
            "Employed - Worked in reference week",
            "Unemployed - Looked for full-time work",
            "Not in the labour force - Last worked before 2020",
            "Employed - Absent in reference week",
            "Unemployed - Temporary layoff",
            "Not in the labour force - Never worked",
            np.nan,
            "Not in labour force",
        ],
        "school_attendance": [
            "Did not attend school",
            "Did not attend school",
            "Attended school",
            "Did not attend school",
            "Attended school",
            "Did not attend school",
            np.nan,
            "did not attend",
        ],
    })


class TestParseAgeGroup:

    def test_parses_ints_and_numeric_strings(self):
        s = pd.Series(["7", " 8 ", "9.0", 10, 16.0])
        assert parse_age_group(s).tolist() == [7, 8, 9, 10, 16]

    def test_unparsable_is_fatal(self):
        with pytest.raises(ValueError, match="Unparsable"):
            parse_age_group(pd.Series(["7", "18 to 19"]))

    def test_missing_is_fatal(self):
        with pytest.raises(ValueError):
            parse_age_group(pd.Series([7, np.nan]))

    def test_fractional_is_fatal(self):
        with pytest.raises(ValueError):
            parse_age_group(pd.Series([7.5]))


class TestExtractLabourForceStatus:

    def test_extracts_from_dense_strings(self, raw):
        out = extract_labour_force_status(raw["labour_force_status"], PATTERN, ORDER)
        assert out.iloc[0] == "Employed"
        assert out.iloc[1] == "Unemployed"
        assert out.iloc[2] == "Not in labour force"
        assert out.iloc[7] == "Not in labour force"
        assert pd.isna(out.iloc[6])

    def test_case_insensitive(self):
        out = extract_labour_force_status(pd.Series(["EMPLOYED", "unemployed"]), PATTERN, ORDER)
        assert out.tolist() == ["Employed", "Unemployed"]

    def test_ordered_categories(self, raw):
        out = extract_labour_force_status(raw["labour_force_status"], PATTERN, ORDER)
        assert out.cat.ordered
        assert list(out.cat.categories) == ORDER

    def test_unrecognised_values_warn_and_become_missing(self):
        with pytest.warns(UserWarning, match="not recognised"):
            out = extract_labour_force_status(pd.Series(["Employed", "Retired"]), PATTERN, ORDER)
        assert pd.isna(out.iloc[1])


class TestNeetStatus:

    def _lfs(self, values):
        return pd.Series(pd.Categorical(values, categories=ORDER, ordered=True))

    def test_unemployed_or_nilf_not_attending_is_neet(self):
        lfs = self._lfs(["Unemployed", "Not in labour force"])
        out = neet_status(lfs, pd.Series([True, True]), "NEET")
        assert out.tolist() == ["NEET", "NEET"]

    def test_attending_keeps_status(self):
        lfs = self._lfs(["Unemployed", "Not in labour force"])
        out = neet_status(lfs, pd.Series([False, False]), "NEET")
        assert out.astype(str).tolist() == ["Unemployed", "Not in labour force"]

    def test_employed_never_neet(self):
        lfs = self._lfs(["Employed", "Employed"])
        out = neet_status(lfs, pd.Series([True, False]), "NEET")
        assert out.astype(str).tolist() == ["Employed", "Employed"]

    def test_neet_is_last_category(self):
        out = neet_status(self._lfs(["Employed"]), pd.Series([False]), "NEET")
        assert list(out.cat.categories) == ["Employed", "Unemployed", "Not in labour force", "NEET"]


class TestIsNotAttending:

    def test_prefix_match(self):
        s = pd.Series(["Did not attend school", "did not attend", "Attended school", np.nan])
        assert is_not_attending(s, "did not attend").tolist() == [True, True, False, False]


class TestDeriveFields:

    def test_flags(self, raw, cfg):
        d = derive_fields(raw, cfg)
        assert d["is_working_age"].tolist() == [True, True, True, True, True, False, False, True]
        assert d["is_youth"].tolist() == [True, True, True, False, False, False, False, True]

    def test_youth_implies_working_age(self, cfg):
        raw = pd.DataFrame({
            "age_group": list(range(1, 22)),
            "weight": [1.0] * 21,
            "labour_force_status": ["Employed"] * 21,
            "school_attendance": ["Attended school"] * 21,
        })
        d = derive_fields(raw, cfg)
        assert (~d["is_youth"] | d["is_working_age"]).all()
        assert d.loc[d["is_youth"], "age_group"].tolist() == [7, 8, 9]

    def test_neet_column(self, raw, cfg):
        d = derive_fields(raw, cfg)
        neet = d["labour_force_status_neet"].astype(object)
        assert neet.iloc[0] == "Employed"
        assert neet.iloc[1] == "NEET"
        assert neet.iloc[2] == "Not in labour force"
        assert neet.iloc[3] == "Employed"
        assert neet.iloc[4] == "Unemployed"
        assert neet.iloc[5] == "NEET"
        assert pd.isna(neet.iloc[6])
        assert neet.iloc[7] == "NEET"

    def test_category_order_never_alphabetical(self, raw, cfg):
        d = derive_fields(raw, cfg)
        assert list(d["labour_force_status"].cat.categories) == ORDER
        assert list(d["labour_force_status_neet"].cat.categories) == ORDER + ["NEET"]

    def test_missing_required_column(self, raw, cfg):
        with pytest.raises(KeyError):
            derive_fields(raw.drop(columns=["school_attendance"]), cfg)

    def test_bad_age_code_aborts(self, raw, cfg):
        bad = raw.astype({"age_group": object})
        bad.loc[0, "age_group"] = "eighteen"
        with pytest.raises(ValueError):
            derive_fields(bad, cfg)

    def test_input_not_mutated(self, raw, cfg):
        before = raw.copy()
        derive_fields(raw, cfg)
        pd.testing.assert_frame_equal(raw, before)

    def test_custom_column_names(self, raw, cfg):
        renamed = raw.rename(columns={
            "age_group": "AGEGRP", "weight": "WEIGHT",
            "labour_force_status": "LFACT", "school_attendance": "ATTSCH",
        })
        cfg["columns"] = {
            "age_group": "AGEGRP", "weight": "WEIGHT",
            "labour_force": "LFACT", "school_attendance": "ATTSCH",
        }
        d = derive_fields(renamed, cfg)
        assert d["age_group"].tolist() == raw["age_group"].tolist()
        assert d["weight"].tolist() == raw["weight"].tolist()
        assert "school_attendance" in d.columns
