"""Tests for term-start derivation and the other derived columns."""

import unittest

import pandas as pd
import pytest

from approval_ratings.features import (
    add_days_in_office,
    add_net_approval,
    add_term_start,
    apply_term_start_overrides,
    assign_days_in_office,
    build_term_start_table,
    check_unsure_totals,
    derive_term_starts,
    inauguration_for_year,
    normalize_dataframe_columns,
    summarize_term_starts,
)


def _records(rows):
    """rows: list of (president, date) -> minimal approval table."""
    df = pd.DataFrame(rows, columns=["president", "date"])
    df["date"] = pd.to_datetime(df["date"])
    df["approval"] = 50.0
    df["disapproval"] = 40.0
    df["unsure"] = 10.0
    return df


@pytest.fixture
def two_presidents():
    return _records(
        [
            ("A", "1961-05-01"),
            ("A", "1960-03-01"),
            ("A", "1962-01-01"),
            ("B", "1970-07-01"),
            ("B", "1971-02-01"),
        ]
    )


def test_term_start_is_january_20th_of_earliest_poll_year(two_presidents):
    term_starts = derive_term_starts(two_presidents).set_index("president")["term_start"]

    assert term_starts["A"] == pd.Timestamp("1960-01-20")
    assert term_starts["B"] == pd.Timestamp("1970-01-20")


def test_no_overrides_leaves_derived_values(two_presidents):
    term_starts = build_term_start_table(two_presidents, overrides={})

    assert not term_starts["overridden"].any()
    assert set(term_starts["president"]) == {"A", "B"}


def test_override_wins_over_derived_value():
    df = _records([("Ford", "1974-09-01"), ("Ford", "1975-01-15")])

    term_starts = build_term_start_table(df, overrides={"Ford": pd.Timestamp("1974-08-09")})

    row = term_starts.set_index("president").loc["Ford"]
    assert row["term_start"] == pd.Timestamp("1974-08-09")
    assert bool(row["overridden"]) is True


def test_default_overrides_cover_the_three_successions():
    df = _records(
        [
            ("Truman", "1945-06-01"),
            ("Johnson", "1963-12-05"),
            ("Ford", "1974-09-01"),
            ("Carter", "1977-02-01"),
        ]
    )

    term_starts = build_term_start_table(df).set_index("president")["term_start"]

    assert term_starts["Truman"] == pd.Timestamp("1945-04-12")
    assert term_starts["Johnson"] == pd.Timestamp("1963-11-22")
    assert term_starts["Ford"] == pd.Timestamp("1974-08-09")
    assert term_starts["Carter"] == pd.Timestamp("1977-01-20")


def test_override_for_president_without_records_is_ignored(two_presidents):
    derived = derive_term_starts(two_presidents)

    result = apply_term_start_overrides(derived, overrides={"Nobody": pd.Timestamp("2000-01-01")})

    assert list(result["president"]) == list(derived["president"])
    assert not result["overridden"].any()


def test_apply_overrides_does_not_modify_input(two_presidents):
    derived = derive_term_starts(two_presidents)
    before = derived.copy()

    apply_term_start_overrides(derived, overrides={"A": pd.Timestamp("1960-02-01")})

    pd.testing.assert_frame_equal(derived, before)


def test_derive_term_starts_on_empty_table():
    empty = _records([])

    term_starts = derive_term_starts(empty)

    assert term_starts.empty
    assert list(term_starts.columns) == ["president", "term_start", "overridden"]


def test_inauguration_for_year():
    assert inauguration_for_year(2009) == pd.Timestamp("2009-01-20")


class TestTermStartJoin(unittest.TestCase):
    """Broadcasting term starts back onto every record."""

    def setUp(self):
        self.df = _records(
            [
                ("A", "1960-03-01"),
                ("B", "1970-07-01"),
                ("A", "1961-05-01"),
                ("B", "1971-02-01"),
            ]
        )
        self.term_starts = derive_term_starts(self.df)

    def test_every_record_of_a_president_gets_the_same_term_start(self):
        joined = add_term_start(self.df, self.term_starts)

        per_president = joined.groupby("president")["term_start"].nunique()
        self.assertTrue((per_president == 1).all())
        self.assertEqual(len(joined), len(self.df))

    def test_row_order_and_index_are_preserved(self):
        df = self.df.set_index(pd.Index([10, 11, 12, 13]))

        joined = add_term_start(df, self.term_starts)

        self.assertEqual(list(joined.index), [10, 11, 12, 13])
        self.assertEqual(list(joined["president"]), ["A", "B", "A", "B"])

    def test_missing_term_start_raises(self):
        partial = self.term_starts[self.term_starts["president"] == "A"]

        with self.assertRaises(ValueError) as ctx:
            add_term_start(self.df, partial)
        self.assertIn("B", str(ctx.exception))

    def test_duplicate_term_start_rows_are_rejected(self):
        doubled = pd.concat([self.term_starts, self.term_starts], ignore_index=True)

        with self.assertRaises(pd.errors.MergeError):
            add_term_start(self.df, doubled)


def test_days_in_office_is_exact_day_difference(two_presidents):
    result = assign_days_in_office(two_presidents, overrides={})

    expected = (result["date"] - result["term_start"]).dt.days
    assert (result["days_in_office"] == expected).all()
    assert result["days_in_office"].dtype == "int64"
    assert result.loc[result["date"] == pd.Timestamp("1960-03-01"), "days_in_office"].iloc[0] == 41


def test_records_before_overridden_term_start_are_flagged_not_dropped():
    # Poll fielded a week before the succession date
    df = _records([("Johnson", "1963-11-15"), ("Johnson", "1963-12-05")])

    result = assign_days_in_office(df, overrides={"Johnson": pd.Timestamp("1963-11-22")})

    assert len(result) == 2
    early = result[result["date"] == pd.Timestamp("1963-11-15")].iloc[0]
    assert early["days_in_office"] == -7
    assert bool(early["before_term_start"]) is True
    later = result[result["date"] == pd.Timestamp("1963-12-05")].iloc[0]
    assert later["days_in_office"] == 13
    assert bool(later["before_term_start"]) is False


def test_add_days_in_office_without_early_records():
    df = _records([("A", "1960-03-01")])
    df["term_start"] = pd.Timestamp("1960-01-20")

    result = add_days_in_office(df)

    assert not result["before_term_start"].any()
    assert "days_in_office" not in df.columns


def test_add_net_approval():
    df = _records([("A", "1960-03-01")])

    result = add_net_approval(df)

    assert result["net_approval"].iloc[0] == pytest.approx(10.0)


def test_check_unsure_totals_reports_only_inconsistent_rows():
    df = _records([("A", "1960-03-01"), ("A", "1960-04-01")])
    df.loc[1, "unsure"] = 20.0

    off = check_unsure_totals(df)

    assert list(off.index) == [1]
    assert check_unsure_totals(df, tolerance=15).empty


def test_summarize_term_starts(two_presidents):
    overrides = {"B": pd.Timestamp("1970-08-01")}
    result = assign_days_in_office(two_presidents, overrides=overrides)

    summary = summarize_term_starts(result, overrides).set_index("president")

    assert summary.loc["A", "records"] == 3
    assert summary.loc["A", "first_poll"] == pd.Timestamp("1960-03-01")
    assert summary.loc["A", "last_poll"] == pd.Timestamp("1962-01-01")
    assert not summary.loc["A", "overridden"]
    assert summary.loc["B", "overridden"]
    assert summary.loc["B", "records_before_term_start"] == 1


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("End Date", "end_date"),
        (" Approving ", "approving"),
        ("Unsure/No Data", "unsure/no_data"),
    ],
)
def test_normalize_dataframe_columns(raw, expected):
    df = pd.DataFrame({raw: [1]})

    assert list(normalize_dataframe_columns(df).columns) == [expected]
