# tests/test_report_sections.py
import sys
import warnings
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from data_loaders import return_default_config
from derived_fields import derive_fields
from labels import LabelResolver
from report_sections import (
    SECTIONS,
    ReportContext,
    SectionResult,
    age_distribution,
    demographics,
    housing_low_income,
    income,
    labour_force,
    labour_force_by_age,
    neet_profile,
    run_sections,
    school_attendance,
    youth_share,
)

YOUTH = "Youth (18-29)"
OTHER = "Other working-age adults (30-64)"


# ============================================================================
# Test Fixtures
# ============================================================================
@pytest.fixture
def raw():
    """
    Seven records; six are working age (weight 20), three of them youth
    (weight 6). Record 2 is NEET youth, record 5 is NEET but not youth.
    """
    return pd.DataFrame({
        "age_group": [7, 8, 9, 10, 14, 17, 16],
        "weight": [2.0, 3.0, 1.0, 4.0, 6.0, 9.0, 4.0],
        "labour_force_status": [
            "Employed - Worked in reference week",
            "Unemployed - Looked for work",
            "Not in the labour force - Never worked",
            "Employed - Absent in reference week",
            "Not in the labour force - Last worked in 2019",
            "Employed - Worked in reference week",
            "Unemployed - Temporary layoff",
        ],
        "school_attendance": [
            "Attended school",
            "Did not attend school",
            "Attended school",
            "Did not attend school",
            "Did not attend school",
            "Did not attend school",
            "Attended school",
        ],
        "gender": ["Woman+", "Man+", "Woman+", "Man+", "Woman+", "Man+", "Woman+"],
        "immigration_status": [
            "Non-immigrant", "Immigrant", "Immigrant", "Non-immigrant",
            "Non-immigrant", "Immigrant", "Immigrant",
        ],
        "total_income": [10_000.0, 5_000.0, 0.0, 50_000.0, 30_000.0, 99_000.0, 20_000.0],
    })


@pytest.fixture
def ctx(raw):
    cfg = return_default_config()
    return ReportContext(data=derive_fields(raw, cfg), labels=LabelResolver(), cfg=cfg)


def _quiet(fn, ctx):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return fn(ctx)


# ============================================================================
# Sections
# ============================================================================
class TestYouthShare:

    def test_shares_and_labels(self, ctx):
        res = youth_share(ctx)
        assert isinstance(res, SectionResult)
        t = res.table
        assert t["is_youth"].tolist() == [YOUTH, "Other working-age adults (30-64)"]
        assert t["weight"].tolist() == pytest.approx([6.0, 14.0])
        assert t["prop"].tolist() == pytest.approx([0.3, 0.7])

    def test_outside_working_age_excluded(self, ctx):
        assert youth_share(ctx).table["weight"].sum() == pytest.approx(20.0)


class TestAgeDistribution:

    def test_rows_in_code_order(self, ctx):
        t = age_distribution(ctx).table
        assert t["age_group"].tolist() == ["7", "8", "9", "10", "14", "16"]
        assert t["prop"].sum() == pytest.approx(1.0)

    def test_cumulative_youth_share(self, ctx):
        t = age_distribution(ctx).table
        cum = t["cum_prop_youth"]
        assert cum.iloc[:3].tolist() == pytest.approx([2 / 6, 5 / 6, 1.0])
        assert cum.iloc[2] == 1.0
        assert cum.iloc[3:].isna().all()

    def test_codes_labelled(self, ctx):
        labels = LabelResolver(values={"age_group": {"7": "18 to 19 years", "8": "20 to 24 years",
                                                     "9": "25 to 29 years", "10": "30 to 34 years",
                                                     "14": "50 to 54 years", "16": "60 to 64 years"}})
        t = age_distribution(ReportContext(ctx.data, labels, ctx.cfg)).table
        assert t["age_group"].iloc[0] == "18 to 19 years"


class TestDemographics:

    def test_absent_columns_warn(self, ctx):
        with pytest.warns(UserWarning, match="indigenous_identity"):
            demographics(ctx)

    def test_shares_per_variable_and_group(self, ctx):
        res = _quiet(demographics, ctx)
        t = res.table
        assert res.group_col == "var"
        assert list(t.columns) == ["var", "value", YOUTH, OTHER]
        assert t["var"].drop_duplicates().tolist() == ["Immigrant status", "Gender"]
        sums = t.groupby("var")[[YOUTH, OTHER]].sum()
        assert np.allclose(sums.to_numpy(), 1.0)
        row = t.set_index(["var", "value"])
        assert row.loc[("Gender", "Woman+"), YOUTH] == pytest.approx(3 / 6)
        assert row.loc[("Gender", "Woman+"), OTHER] == pytest.approx(10 / 14)


class TestLabourForce:

    def test_neet_split(self, ctx):
        t = labour_force(ctx).table
        assert t["labour_force_status_neet"].tolist() == [
            "Employed", "Unemployed", "Not in labour force", "NEET",
        ]
        row = t.set_index("labour_force_status_neet")
        assert row.loc["Employed", YOUTH] == pytest.approx(2 / 6)
        assert row.loc["NEET", YOUTH] == pytest.approx(3 / 6)
        assert row.loc["NEET", OTHER] == pytest.approx(6 / 14)
        # no unemployed youth outside NEET
        assert pd.isna(row.loc["Unemployed", YOUTH])

    def test_columns_sum_to_one(self, ctx):
        t = labour_force(ctx).table
        assert t[YOUTH].sum() == pytest.approx(1.0)
        assert t[OTHER].sum() == pytest.approx(1.0)


class TestLabourForceByAge:

    def test_every_age_column_sums_to_one(self, ctx):
        t = labour_force_by_age(ctx).table
        age_cols = ["7", "8", "9", "10", "14", "16"]
        assert list(t.columns) == ["labour_force_status"] + age_cols
        assert np.allclose(t[age_cols].sum().to_numpy(), 1.0)

    def test_unobserved_cells_are_zero(self, ctx):
        t = labour_force_by_age(ctx).table.set_index("labour_force_status")
        assert t.loc["Unemployed", "7"] == 0.0
        assert t.notna().all().all()


class TestSchoolAttendance:

    def test_youth_shares(self, ctx):
        t = school_attendance(ctx).table.set_index("school_attendance")
        assert t.loc["Attended school", YOUTH] == pytest.approx(0.5)
        assert t.loc["Did not attend school", OTHER] == pytest.approx(10 / 14)


class TestNeetProfile:

    def test_only_neet_youth(self, ctx):
        t = _quiet(neet_profile, ctx).table
        assert t["weight"].groupby(t["var"]).sum().tolist() == pytest.approx([3.0, 3.0])
        row = t.set_index(["var", "value"])
        assert row.loc[("Gender", "Man+"), "prop"] == pytest.approx(1.0)
        assert row.loc[("Immigrant status", "Immigrant"), "prop"] == pytest.approx(1.0)

    def test_no_neet_youth_gives_empty_table(self, raw):
        raw = raw.assign(school_attendance="Attended school")
        cfg = return_default_config()
        ctx = ReportContext(derive_fields(raw, cfg), LabelResolver(), cfg)
        assert _quiet(neet_profile, ctx).table.empty


class TestIncome:

    def test_weighted_means(self, ctx):
        res = _quiet(income, ctx)
        assert res.default_format == "currency"
        row = res.table.set_index("var")
        assert row.loc["Total income", YOUTH] == pytest.approx(35_000 / 6)
        assert row.loc["Total income", OTHER] == pytest.approx(460_000 / 14)

    def test_only_present_components(self, ctx):
        assert _quiet(income, ctx).table["var"].tolist() == ["Total income"]


class TestHousingLowIncome:

    def test_all_columns_absent_gives_empty_table(self, ctx):
        with pytest.warns(UserWarning, match="core_housing_need"):
            res = housing_low_income(ctx)
        assert res.table.empty
        assert list(res.table.columns) == ["var", "value", YOUTH, OTHER]

    def test_present_indicator(self, raw):
        raw = raw.assign(low_income_mbm=["Yes", "No", "No", "No", "No", "No", "Yes"])
        cfg = return_default_config()
        ctx = ReportContext(derive_fields(raw, cfg), LabelResolver(), cfg)
        t = _quiet(housing_low_income, ctx).table.set_index("value")
        assert t.loc["Yes", YOUTH] == pytest.approx(2 / 6)
        assert t.loc["Yes", OTHER] == pytest.approx(4 / 14)


# ============================================================================
# run_sections
# ============================================================================
class TestRunSections:

    def test_runs_all_in_order(self, ctx):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            results = run_sections(ctx, progress=False)
        assert [r.key for r in results] == list(SECTIONS)

    def test_subset(self, ctx):
        results = run_sections(ctx, ["labour_force", "youth_share"], progress=False)
        assert [r.key for r in results] == ["labour_force", "youth_share"]

    def test_unknown_key_raises(self, ctx):
        with pytest.raises(KeyError):
            run_sections(ctx, ["nope"], progress=False)

    def test_empty_section_reported(self, ctx, capsys):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            run_sections(ctx, ["housing_low_income"], progress=False)
        assert "[report]" in capsys.readouterr().out

    def test_data_not_modified(self, ctx):
        before = ctx.data.copy()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            run_sections(ctx, progress=False)
        pd.testing.assert_frame_equal(ctx.data, before)
