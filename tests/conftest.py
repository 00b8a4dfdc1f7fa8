"""Shared fixtures: small synthetic workbooks and CSVs written to tmp_path."""

import json

from loguru import logger
import pandas as pd
import pytest


def poll_sheet(end_dates, approving, disapproving, unsure):
    """Build a sheet laid out like the historical workbook (start date first, end date second)."""
    ends = pd.to_datetime(pd.Series(end_dates))
    return pd.DataFrame(
        {
            "Start Date": ends - pd.Timedelta(days=3),
            "End Date": ends,
            "Approving": approving,
            "Disapproving": disapproving,
            "Unsure/No Data": unsure,
        }
    )


def write_workbook(path, sheets):
    with pd.ExcelWriter(path) as writer:
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=name, index=False)
    return path


@pytest.fixture
def log_messages():
    """Collect WARNING-and-above loguru messages emitted during a test."""
    messages = []
    handler_id = logger.add(messages.append, level="WARNING", format="{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def sheet_factory():
    return poll_sheet


@pytest.fixture
def workbook_writer():
    return write_workbook


@pytest.fixture
def sheet_map():
    return {"Kennedy": "JFK", "Johnson": "LBJ"}


@pytest.fixture
def historical_workbook(tmp_path):
    """Two sheets: Kennedy (3 polls) and Johnson (2 polls, first one after the succession)."""
    sheets = {
        "JFK": poll_sheet(
            ["1961-02-10", "1961-06-01", "1963-11-10"],
            [72, 75, 58],
            [6, 14, 30],
            [22, 11, 12],
        ),
        "LBJ": poll_sheet(
            ["1963-12-05", "1964-03-01"],
            [78, 75],
            [2, 11],
            [20, 14],
        ),
    }
    return write_workbook(tmp_path / "historical.xlsx", sheets)


@pytest.fixture
def trump_csv(tmp_path):
    """Three model dates, each with an Adults, a Voters and an All polls estimate."""
    rows = []
    for modeldate, approve, disapprove in [
        ("1/23/2017", 45.5, 41.0),
        ("1/24/2017", 44.9, 42.2),
        ("12/5/2017", 37.6, 56.1),
    ]:
        rows.append({"president": "Donald Trump", "subgroup": "Adults", "modeldate": modeldate,
                     "approve_estimate": approve, "disapprove_estimate": disapprove})
        rows.append({"president": "Donald Trump", "subgroup": "Voters", "modeldate": modeldate,
                     "approve_estimate": approve + 1, "disapprove_estimate": disapprove - 1})
        rows.append({"president": "Donald Trump", "subgroup": "All polls", "modeldate": modeldate,
                     "approve_estimate": approve + 0.5, "disapprove_estimate": disapprove - 0.5})

    path = tmp_path / "approval_topline.csv"
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


@pytest.fixture
def sheet_map_file(tmp_path, sheet_map):
    path = tmp_path / "sheet_map.json"
    path.write_text(json.dumps(sheet_map), encoding="utf-8")
    return path


@pytest.fixture
def approval_table():
    """A processed-looking table for chart tests, without going through Excel."""
    records = []
    for president, term_start, dates in [
        ("Kennedy", "1961-01-20", ["1961-02-10", "1962-06-01", "1963-11-10"]),
        ("Johnson", "1963-11-22", ["1963-12-05", "1965-03-01", "1968-01-01"]),
        ("Trump", "2017-01-20", ["2017-01-23", "2017-08-20", "2018-12-30", "2020-04-01"]),
    ]:
        for i, day in enumerate(dates):
            approval = 60.0 - 5 * i
            disapproval = 30.0 + 4 * i
            records.append(
                {
                    "president": president,
                    "date": pd.Timestamp(day),
                    "approval": approval,
                    "disapproval": disapproval,
                    "unsure": 100 - approval - disapproval,
                    "term_start": pd.Timestamp(term_start),
                    "source": "trump" if president == "Trump" else "historical",
                }
            )
    df = pd.DataFrame(records)
    df["net_approval"] = df["approval"] - df["disapproval"]
    df["days_in_office"] = (df["date"] - df["term_start"]).dt.days
    df["before_term_start"] = df["days_in_office"] < 0
    return df
