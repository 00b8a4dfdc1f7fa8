"""This file contains code to derive values that aren't in the raw polling data but which the charts need.
It shall never output to "raw" data.  It takes the normalized, stacked approval table as input and returns new frames.

The central piece is the term-start derivation:

Given a president has at least one recorded poll, when no override is configured for them,
then their term start shall be January 20th of the year of their earliest recorded poll.
Given a president took office by succession (death or resignation of a predecessor),
when an override is configured for them, then the override date shall be their term start regardless of the derived value.
Given every record of a president, when the term start is joined back onto them, then all of those records shall carry the same term start,
and days in office shall be the whole-day difference between the record date and that term start.
"""

from typing import Mapping, Optional

from loguru import logger
import pandas as pd

from approval_ratings.config import INAUGURATION_DAY, INAUGURATION_MONTH, TERM_START_OVERRIDES


def normalize_dataframe_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize column names in a DataFrame: strip, convert to lowercase and replace spaces with underscores.

    Args:
        df: DataFrame to normalize

    Returns:
        DataFrame with normalized column names
    """
    if df is None:
        return df

    # Create a mapping of old names to new names
    column_mapping = {col: str(col).strip().casefold().replace(" ", "_") for col in df.columns}

    # Rename columns using the mapping
    return df.rename(columns=column_mapping)


def _empty_term_start_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "president": pd.Series(dtype=object),
            "term_start": pd.Series(dtype="datetime64[ns]"),
            "overridden": pd.Series(dtype=bool),
        }
    )


def inauguration_for_year(year: int) -> pd.Timestamp:
    """Regular inauguration date for the given year."""
    return pd.Timestamp(year=int(year), month=INAUGURATION_MONTH, day=INAUGURATION_DAY)


def derive_term_starts(df: pd.DataFrame) -> pd.DataFrame:
    """
    Derive one term start per president from their earliest recorded poll.

    Records are sorted by date within each president and the first row is kept;
    the term start is January 20th of that row's year.  Presidents with no
    records simply produce no row.

    Args:
        df: Approval table with at least ``president`` and ``date`` columns

    Returns:
        DataFrame with columns ``president``, ``term_start`` and ``overridden`` (all False here)
    """
    if df.empty:
        return _empty_term_start_table()

    earliest = (
        df[["president", "date"]]
        .sort_values(["president", "date"], kind="mergesort")
        .groupby("president", sort=False)
        .head(1)
        .reset_index(drop=True)
    )

    term_starts = pd.DataFrame(
        {
            "president": earliest["president"],
            "term_start": earliest["date"].dt.year.map(inauguration_for_year).astype("datetime64[ns]"),
            "overridden": False,
        }
    )
    logger.debug(f"Derived term starts for {len(term_starts)} presidents")
    return term_starts


def apply_term_start_overrides(
    term_starts: pd.DataFrame,
    overrides: Optional[Mapping[str, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """
    Replace derived term starts with the configured succession dates.

    Overrides always win over the derived value.  An override naming a
    president who has no records is logged and otherwise ignored.

    Args:
        term_starts: Output of ``derive_term_starts``
        overrides: Mapping president -> term start; defaults to TERM_START_OVERRIDES

    Returns:
        New DataFrame with overridden rows replaced and flagged
    """
    if overrides is None:
        overrides = TERM_START_OVERRIDES

    result = term_starts.copy()
    known = set(result["president"])

    for president, override in overrides.items():
        if president not in known:
            logger.warning(f"Term-start override for '{president}' ignored: no records for that president")
            continue

        mask = result["president"] == president
        derived = result.loc[mask, "term_start"].iloc[0]
        override = pd.Timestamp(override)
        if derived != override:
            logger.debug(f"Overriding term start for {president}: {derived.date()} -> {override.date()}")
        result.loc[mask, "term_start"] = override
        result.loc[mask, "overridden"] = True

    return result


def build_term_start_table(
    df: pd.DataFrame,
    overrides: Optional[Mapping[str, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """Derive term starts and apply the override table in one step."""
    return apply_term_start_overrides(derive_term_starts(df), overrides)


def add_term_start(df: pd.DataFrame, term_starts: pd.DataFrame) -> pd.DataFrame:
    """
    Broadcast each president's term start onto all of their records.

    Args:
        df: Approval table
        term_starts: One row per president with ``term_start``

    Returns:
        New DataFrame with a ``term_start`` column, in the original row order

    Raises:
        ValueError: If any record ends up without a term start
    """
    merged = df.drop(columns=["term_start"], errors="ignore").merge(
        term_starts[["president", "term_start"]],
        on="president",
        how="left",
        validate="many_to_one",
    )
    merged.index = df.index

    missing = merged["term_start"].isna()
    if missing.any():
        presidents = sorted(merged.loc[missing, "president"].astype(str).unique())
        raise ValueError(f"No term start available for presidents: {presidents}")

    return merged


def add_days_in_office(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add ``days_in_office`` and the ``before_term_start`` flag.

    Records dated before their president's term start keep their negative
    day count; they are flagged and reported rather than dropped.
    """
    result = df.copy()
    result["days_in_office"] = (result["date"] - result["term_start"]).dt.days.astype("int64")
    result["before_term_start"] = result["days_in_office"] < 0

    early = result[result["before_term_start"]]
    if not early.empty:
        for president, count in early.groupby("president").size().items():
            logger.warning(
                f"{count} record(s) for {president} predate the term start "
                f"{early.loc[early['president'] == president, 'term_start'].iloc[0].date()}"
            )

    return result


def add_net_approval(df: pd.DataFrame) -> pd.DataFrame:
    """Add ``net_approval`` = approval - disapproval."""
    result = df.copy()
    result["net_approval"] = result["approval"] - result["disapproval"]
    return result


def assign_days_in_office(
    df: pd.DataFrame,
    overrides: Optional[Mapping[str, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """Run the whole term-start step: derive, override, join, count days."""
    term_starts = build_term_start_table(df, overrides)
    logger.info(
        f"Term starts resolved for {len(term_starts)} presidents "
        f"({int(term_starts['overridden'].sum())} overridden)"
    )
    return add_days_in_office(add_term_start(df, term_starts))


def summarize_term_starts(
    df: pd.DataFrame,
    overrides: Optional[Mapping[str, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """
    Build an audit table with one row per president.

    Args:
        df: Approval table that already carries ``term_start`` and ``days_in_office``
        overrides: Override table used for the build; defaults to TERM_START_OVERRIDES

    Returns:
        DataFrame with term_start, first_poll, last_poll, records,
        overridden and records_before_term_start per president
    """
    if overrides is None:
        overrides = TERM_START_OVERRIDES

    if df.empty:
        return pd.DataFrame(
            columns=["president", "term_start", "first_poll", "last_poll",
                     "records", "overridden", "records_before_term_start"]
        )

    summary = (
        df.groupby("president", sort=False)
        .agg(
            term_start=("term_start", "first"),
            first_poll=("date", "min"),
            last_poll=("date", "max"),
            records=("date", "size"),
            records_before_term_start=("days_in_office", lambda s: int((s < 0).sum())),
        )
        .reset_index()
    )
    summary["overridden"] = summary["president"].isin(list(overrides.keys()))
    return summary[["president", "term_start", "first_poll", "last_poll",
                    "records", "overridden", "records_before_term_start"]]


def check_unsure_totals(df: pd.DataFrame, tolerance: float = 0.5) -> pd.DataFrame:
    """
    Return the rows whose approval, disapproval and unsure shares don't add up to 100.

    Args:
        df: Approval table
        tolerance: Allowed absolute deviation in percentage points

    Returns:
        The offending rows (empty if every row is consistent)
    """
    total = df["approval"] + df["disapproval"] + df["unsure"]
    off = (total - 100).abs() > tolerance
    if off.any():
        logger.warning(f"{int(off.sum())} row(s) deviate from 100% by more than {tolerance} points")
    return df[off]

