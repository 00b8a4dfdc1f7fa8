"""
Data pipeline for building the presidential approval table.

This module reads the two raw sources (a historical workbook with one sheet per
pre-Trump president and a flat CSV of daily Trump approval estimates), brings
both to the same schema, stacks them, and hands the result to features.py for
the term-start and days-in-office derivation.

Any problem with the sources aborts the build: there is no partial result.
"""

from pathlib import Path
from typing import Dict, Mapping, Optional

from loguru import logger
import pandas as pd
from tqdm import tqdm
import typer

from approval_ratings.config import (
    ADULTS_SUBGROUP,
    APPROVAL_WORKBOOK,
    CANONICAL_COLUMNS,
    HISTORICAL_COLUMN_ALIASES,
    PRESIDENT_SHEETS,
    PROCESSED_DATA_DIR,
    PROCESSED_FILENAME,
    TERM_START_OVERRIDES,
    TRUMP,
    TRUMP_APPROVAL_CSV,
    load_president_sheet_map,
    load_term_start_overrides,
)
from approval_ratings.features import (
    add_net_approval,
    assign_days_in_office,
    check_unsure_totals,
    normalize_dataframe_columns,
    summarize_term_starts,
)

app = typer.Typer()

TRUMP_REQUIRED_COLUMNS = ["modeldate", "subgroup", "approve_estimate", "disapprove_estimate"]
TRUMP_DATE_FORMAT = "%m/%d/%Y"

OUTPUT_COLUMNS = [
    "president", "date", "approval", "disapproval", "unsure", "net_approval",
    "term_start", "days_in_office", "before_term_start", "source",
]


class ApprovalPipelineError(Exception):
    """Base exception for approval pipeline errors."""
    pass


class SourceReadError(ApprovalPipelineError):
    """Raised when a source file or sheet is missing or cannot be parsed."""
    pass


class SchemaMismatchError(ApprovalPipelineError):
    """Raised when an expected column is absent."""
    pass


class UnmappedPresidentError(ApprovalPipelineError):
    """Raised when workbook sheets and the president-to-sheet mapping disagree."""
    pass


# Everything the CLIs turn into a logged error and exit status 1
PIPELINE_ERRORS = (ApprovalPipelineError, FileNotFoundError, ValueError)


def _parse_dates(values: pd.Series, label: str, date_format: Optional[str] = None) -> pd.Series:
    """Parse a date column, failing loudly on anything missing or unparseable."""
    parsed = pd.to_datetime(values, format=date_format, errors="coerce")
    bad = parsed.isna()
    if bad.any():
        examples = values[bad].head(3).tolist()
        raise SourceReadError(
            f"{label}: {int(bad.sum())} missing or malformed date value(s), e.g. {examples}"
        )
    return parsed.dt.normalize()


def _coerce_numeric(values: pd.Series, label: str) -> pd.Series:
    """Convert a column to float; present-but-unparseable values are an error."""
    converted = pd.to_numeric(values, errors="coerce")
    bad = converted.isna() & values.notna()
    if bad.any():
        examples = values[bad].head(3).tolist()
        raise SourceReadError(f"{label}: {int(bad.sum())} non-numeric value(s), e.g. {examples}")
    return converted.astype(float)


def _require_columns(df: pd.DataFrame, columns, label: str) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise SchemaMismatchError(f"{label} is missing column(s): {missing}")


def _resolve_column(df: pd.DataFrame, canonical: str, label: str) -> str:
    """Find the raw header that holds ``canonical`` or raise SchemaMismatchError."""
    for candidate in HISTORICAL_COLUMN_ALIASES[canonical]:
        if candidate in df.columns:
            return candidate
    raise SchemaMismatchError(
        f"{label}: no '{canonical}' column (accepted headers: "
        f"{HISTORICAL_COLUMN_ALIASES[canonical]}; found: {list(df.columns)})"
    )


def read_historical_workbook(
    path: Path,
    sheet_map: Optional[Mapping[str, str]] = None,
) -> Dict[str, pd.DataFrame]:
    """
    Read every mapped sheet of the historical workbook.

    Args:
        path: Path to the .xlsx/.xls workbook
        sheet_map: Mapping president -> sheet name; defaults to PRESIDENT_SHEETS

    Returns:
        Dict of raw DataFrames keyed by president, in mapping order

    Raises:
        SourceReadError: If the file is missing/unreadable or a mapped sheet is absent
        UnmappedPresidentError: If a sheet is claimed twice or a workbook sheet has no president
    """
    if sheet_map is None:
        sheet_map = PRESIDENT_SHEETS

    path = Path(path)
    if not path.exists():
        logger.error(f"Historical workbook not found: {path}")
        raise SourceReadError(f"Historical workbook not found: {path}")

    claimed = pd.Series(list(sheet_map.values()))
    doubled = sorted(claimed[claimed.duplicated()].unique())
    if doubled:
        raise UnmappedPresidentError(
            f"Sheet(s) {doubled} are assigned to more than one president in the sheet map"
        )

    try:
        workbook = pd.ExcelFile(path)
    except Exception as e:
        raise SourceReadError(f"Could not open historical workbook {path}: {e}") from e

    with workbook:
        available = [str(name) for name in workbook.sheet_names]

        missing = [sheet for sheet in sheet_map.values() if sheet not in available]
        if missing:
            raise SourceReadError(f"Workbook {path} is missing sheet(s): {missing}")

        unmapped = [sheet for sheet in available if sheet not in set(sheet_map.values())]
        if unmapped:
            raise UnmappedPresidentError(
                f"Workbook {path} has sheet(s) with no president assigned: {unmapped}"
            )

        frames: Dict[str, pd.DataFrame] = {}
        for president, sheet in tqdm(sheet_map.items(), desc="Reading sheets", leave=False):
            try:
                frames[president] = workbook.parse(sheet)
            except Exception as e:
                raise SourceReadError(f"Could not read sheet '{sheet}' of {path}: {e}") from e
            logger.debug(f"Read {len(frames[president])} rows for {president} from sheet '{sheet}'")

    logger.info(f"Read {len(frames)} sheets from {path}")
    return frames


def normalize_historical_sheet(raw: pd.DataFrame, president: str, sheet_name: str) -> pd.DataFrame:
    """
    Bring one workbook sheet to the canonical schema.

    Columns are found by name, not position.  The poll's start date is dropped
    and its end date becomes ``date``.

    A blank approval, disapproval or unsure cell is kept as NaN and logged as a
    warning naming the sheet and column, so the row count never changes.

    Args:
        raw: DataFrame as read from the sheet
        president: President the sheet belongs to
        sheet_name: Sheet name, used in error messages

    Returns:
        DataFrame with the canonical columns
    """
    label = f"Sheet '{sheet_name}' ({president})"
    df = normalize_dataframe_columns(raw)

    columns = {
        canonical: _resolve_column(df, canonical, label)
        for canonical in ["date", "approval", "disapproval", "unsure"]
    }

    normalized = pd.DataFrame(
        {
            "president": pd.Series(president, index=df.index, dtype=object),
            "date": _parse_dates(df[columns["date"]], f"{label} column '{columns['date']}'"),
            "approval": _coerce_numeric(df[columns["approval"]], f"{label} column '{columns['approval']}'"),
            "disapproval": _coerce_numeric(df[columns["disapproval"]], f"{label} column '{columns['disapproval']}'"),
            "unsure": _coerce_numeric(df[columns["unsure"]], f"{label} column '{columns['unsure']}'"),
            "source": pd.Series("historical", index=df.index, dtype=object),
        }
    )[CANONICAL_COLUMNS]

    for canonical in ["approval", "disapproval", "unsure"]:
        blank = int(normalized[canonical].isna().sum())
        if blank:
            logger.warning(f"{label} column '{columns[canonical]}': {blank} blank value(s) kept as NaN")

    return normalized


def load_historical_approval(
    path: Path,
    sheet_map: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    """Read and normalize every sheet of the workbook, stacked in mapping order."""
    if sheet_map is None:
        sheet_map = PRESIDENT_SHEETS

    raw_frames = read_historical_workbook(path, sheet_map)
    normalized = [
        normalize_historical_sheet(raw, president, sheet_map[president])
        for president, raw in raw_frames.items()
    ]
    historical = pd.concat(normalized, ignore_index=True)

    for president, raw in raw_frames.items():
        if raw.empty:
            logger.warning(f"Sheet '{sheet_map[president]}' for {president} has no records")

    logger.info(f"Loaded {len(historical):,} historical approval records for {len(raw_frames)} presidents")
    return historical


def read_trump_estimates(path: Path) -> pd.DataFrame:
    """
    Read the Trump approval CSV and check its required columns.

    Raises:
        SourceReadError: If the file is missing or can't be parsed
        SchemaMismatchError: If a required column is absent
    """
    path = Path(path)
    if not path.exists():
        logger.error(f"Trump approval CSV not found: {path}")
        raise SourceReadError(f"Trump approval CSV not found: {path}")

    try:
        raw = pd.read_csv(path)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        raise SourceReadError(f"Could not parse Trump approval CSV {path}: {e}") from e

    _require_columns(raw, TRUMP_REQUIRED_COLUMNS, f"Trump approval CSV {path}")

    logger.debug(f"Read {len(raw)} rows from {path}")
    return raw


def normalize_trump_estimates(raw: pd.DataFrame, label: str = "Trump approval CSV") -> pd.DataFrame:
    """
    Keep the all-adults estimates and bring them to the canonical schema.

    ``unsure`` is not in the source and is derived as 100 - approve - disapprove.

    Raises:
        SchemaMismatchError: If a required column is absent
    """
    _require_columns(raw, TRUMP_REQUIRED_COLUMNS, label)
    adults = raw[raw["subgroup"] == ADULTS_SUBGROUP]
    dropped = len(raw) - len(adults)
    if dropped:
        logger.debug(f"Discarded {dropped} subgroup-specific estimates")

    approval = _coerce_numeric(adults["approve_estimate"], f"{label} column 'approve_estimate'")
    disapproval = _coerce_numeric(adults["disapprove_estimate"], f"{label} column 'disapprove_estimate'")

    normalized = pd.DataFrame(
        {
            "president": pd.Series(TRUMP, index=adults.index, dtype=object),
            "date": _parse_dates(adults["modeldate"], f"{label} column 'modeldate'", TRUMP_DATE_FORMAT),
            "approval": approval,
            "disapproval": disapproval,
            "unsure": 100 - approval - disapproval,
            "source": pd.Series("trump", index=adults.index, dtype=object),
        }
    )
    return normalized[CANONICAL_COLUMNS].reset_index(drop=True)


def load_trump_approval(path: Path) -> pd.DataFrame:
    """Read and normalize the Trump approval CSV."""
    trump = normalize_trump_estimates(read_trump_estimates(path), f"Trump approval CSV {path}")
    logger.info(f"Loaded {len(trump):,} '{ADULTS_SUBGROUP}' Trump approval estimates")
    return trump


def validate_canonical_schema(df: pd.DataFrame, label: str) -> None:
    """Raise SchemaMismatchError if ``df`` lacks any canonical column."""
    missing = [col for col in CANONICAL_COLUMNS if col not in df.columns]
    if missing:
        raise SchemaMismatchError(f"{label} is missing canonical column(s): {missing}")


def combine_sources(historical: pd.DataFrame, trump: pd.DataFrame) -> pd.DataFrame:
    """
    Stack the two normalized sources into one table.

    Raises:
        SchemaMismatchError: If either side isn't in the canonical schema
    """
    validate_canonical_schema(historical, "Historical approval table")
    validate_canonical_schema(trump, "Trump approval table")

    combined = pd.concat(
        [historical[CANONICAL_COLUMNS], trump[CANONICAL_COLUMNS]],
        ignore_index=True,
    )

    expected = len(historical) + len(trump)
    if len(combined) != expected:
        raise ApprovalPipelineError(
            f"Combined table has {len(combined)} rows, expected {expected}"
        )

    logger.info(f"Combined {len(historical):,} historical and {len(trump):,} Trump records")
    return combined


def build_approval_dataset(
    workbook_path: Optional[Path] = None,
    csv_path: Optional[Path] = None,
    sheet_map: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """
    Build the full approval table from both raw sources.

    Args:
        workbook_path: Historical workbook; defaults to APPROVAL_WORKBOOK
        csv_path: Trump approval CSV; defaults to TRUMP_APPROVAL_CSV
        sheet_map: President -> sheet name; defaults to PRESIDENT_SHEETS
        overrides: President -> term start for succession cases; defaults to TERM_START_OVERRIDES

    Returns:
        DataFrame with one fully populated row per approval record

    Raises:
        ApprovalPipelineError: If either source can't be loaded as expected
    """
    workbook_path = Path(workbook_path or APPROVAL_WORKBOOK)
    csv_path = Path(csv_path or TRUMP_APPROVAL_CSV)
    if overrides is None:
        overrides = TERM_START_OVERRIDES

    logger.info(f"Building approval dataset from {workbook_path} and {csv_path}")

    historical = load_historical_approval(workbook_path, sheet_map)
    trump = load_trump_approval(csv_path)
    # Only the derived Trump share is expected to complete to 100
    check_unsure_totals(trump)
    combined = combine_sources(historical, trump)

    approval = add_net_approval(assign_days_in_office(combined, overrides))
    approval = approval[OUTPUT_COLUMNS]

    logger.success(
        f"Built approval dataset with {len(approval):,} records "
        f"for {approval['president'].nunique()} presidents"
    )
    return approval


def save_dataframe_to_csv(
    df: pd.DataFrame, filename_without_extension: str, output_dir: Path
) -> Path:
    """
    Save a DataFrame to a pipe-separated CSV file.

    Args:
        df: DataFrame to save
        filename_without_extension: Output filename (without .csv extension)
        output_dir: Directory to save the file in

    Returns:
        Path of the written file
    """
    try:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{filename_without_extension}.csv"
        df.to_csv(output_path, index=False, sep="|", date_format="%Y-%m-%d")
        logger.info(f"Successfully saved {len(df)} records to {output_path}")
        return output_path
    except Exception as e:
        logger.error(f"Error saving {filename_without_extension}: {e}")
        raise


def load_processed_dataset(path: Path) -> pd.DataFrame:
    """Read a table written by ``save_dataframe_to_csv`` back with proper dtypes."""
    path = Path(path)
    if not path.exists():
        raise SourceReadError(f"Processed approval table not found: {path}")

    try:
        df = pd.read_csv(path, sep="|", parse_dates=["date", "term_start"])
    except ValueError as e:
        # EmptyDataError and ParserError are ValueErrors too, as is a missing date column
        raise SourceReadError(f"Could not parse processed approval table {path}: {e}") from e

    validate_canonical_schema(df, f"Processed table {path}")
    if "before_term_start" in df.columns:
        df["before_term_start"] = df["before_term_start"].astype(bool)
    return df


@app.command()
def main(
    workbook: Path = APPROVAL_WORKBOOK,
    trump_csv: Path = TRUMP_APPROVAL_CSV,
    sheet_map_file: Optional[Path] = typer.Option(
        None, help="JSON object mapping president name to workbook sheet name"
    ),
    overrides_file: Optional[Path] = typer.Option(
        None, help="CSV with president,term_start columns replacing the built-in overrides"
    ),
    output_dir: Path = PROCESSED_DATA_DIR,
    output_filename: str = PROCESSED_FILENAME,
):
    """
    Build the processed approval table and save it to the processed data directory.

    Args:
        workbook: Historical approval workbook (one sheet per president)
        trump_csv: Daily Trump approval estimates
        sheet_map_file: Optional JSON replacing the built-in president-to-sheet map
        overrides_file: Optional CSV replacing the built-in term-start overrides
        output_dir: Directory to save output files
        output_filename: Name of the output file, without extension
    """
    try:
        sheet_map = load_president_sheet_map(sheet_map_file) if sheet_map_file else None
        overrides = load_term_start_overrides(overrides_file) if overrides_file else None

        approval = build_approval_dataset(workbook, trump_csv, sheet_map, overrides)
        save_dataframe_to_csv(approval, output_filename, output_dir)

        for row in summarize_term_starts(approval, overrides).itertuples(index=False):
            logger.info(
                f"{row.president}: term start {row.term_start.date()}, "
                f"{row.records} records, {row.records_before_term_start} before term start"
                + (" (override)" if row.overridden else "")
            )
    except PIPELINE_ERRORS as e:
        logger.error(f"Pipeline failed: {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
