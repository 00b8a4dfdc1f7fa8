"""Project configuration and directory paths.

This module defines the project's directory structure, the president-to-sheet
mapping for the historical workbook, and the table of term-start overrides.
All required directories are created when the module is imported.

Directory Structure:
- data/external: Third-party downloads kept as delivered
- data/raw: Source workbook and CSV the pipeline ingests
- data/interim: Intermediate tables
- data/processed: Final approval table ready for plotting
"""

import json
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from loguru import logger
import pandas as pd

# Load environment variables from .env file if it exists
load_dotenv()

def configure_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    rotation: str = "10 MB",
    retention: str = "30 days",
    format: str = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
) -> None:
    """Configure loguru logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file. If None, logs only to stderr.
        rotation: Log rotation condition (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "30 days")
        format: Log message format
    """
    logger.remove()

    # Console output goes through tqdm.write so progress bars are not broken up
    from tqdm import tqdm

    def tqdm_write(msg):
        tqdm.write(msg, end="")

    logger.add(tqdm_write, level=level, format=format, colorize=True)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_file),
            rotation=rotation,
            retention=retention,
            level=level,
            format=format,
            backtrace=True,
            diagnose=True,
            enqueue=True  # Makes logging thread-safe
        )

# Base paths
PROJ_ROOT = Path(__file__).resolve().parents[1]

# Configure default logging
LOG_DIR = PROJ_ROOT / "logs"
LOG_FILE = LOG_DIR / "app.log"
configure_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=LOG_FILE
)

logger.info(f"Project root: {PROJ_ROOT}")

# Data directories
DATA_DIR = PROJ_ROOT / "data"
RAW_DATA_DIR = DATA_DIR / "raw"        # Source workbook and Trump-era CSV
INTERIM_DATA_DIR = DATA_DIR / "interim"  # Intermediate tables
PROCESSED_DATA_DIR = DATA_DIR / "processed"  # Final approval table
EXTERNAL_DATA_DIR = DATA_DIR / "external"    # Untouched third-party downloads

# Other directories
REPORTS_DIR = PROJ_ROOT / "reports"
FIGURES_DIR = REPORTS_DIR / "figures"

# Source files; either may be overridden from the environment / .env
APPROVAL_WORKBOOK = Path(os.getenv("APPROVAL_WORKBOOK", RAW_DATA_DIR / "historical_approval.xlsx"))
TRUMP_APPROVAL_CSV = Path(os.getenv("TRUMP_APPROVAL_CSV", RAW_DATA_DIR / "approval_topline.csv"))
PROCESSED_FILENAME = "approval_ratings"

TRUMP = "Trump"
ADULTS_SUBGROUP = "Adults"

# Regular inaugurations happen on January 20th of the first poll's year
INAUGURATION_MONTH = 1
INAUGURATION_DAY = 20

# President -> sheet name in the historical workbook.  Order here is the
# stacking order of the output; it is never used to identify a sheet.
PRESIDENT_SHEETS: Dict[str, str] = {
    "Roosevelt": "Roosevelt",
    "Truman": "Truman",
    "Eisenhower": "Eisenhower",
    "Kennedy": "Kennedy",
    "Johnson": "Johnson",
    "Nixon": "Nixon",
    "Ford": "Ford",
    "Carter": "Carter",
    "Reagan": "Reagan",
    "H.W. Bush": "H.W. Bush",
    "Clinton": "Clinton",
    "W. Bush": "W. Bush",
    "Obama": "Obama",
}

# Presidents who took office by succession rather than on inauguration day
TERM_START_OVERRIDES: Dict[str, pd.Timestamp] = {
    "Truman": pd.Timestamp("1945-04-12"),   # death of Roosevelt
    "Johnson": pd.Timestamp("1963-11-22"),  # assassination of Kennedy
    "Ford": pd.Timestamp("1974-08-09"),     # resignation of Nixon
}

# Canonical column -> accepted raw headers (casefolded, spaces as underscores).
# The poll start date column is not listed: it is dropped in favor of the end date.
HISTORICAL_COLUMN_ALIASES: Dict[str, list] = {
    "date": ["end_date", "end", "date"],
    "approval": ["approving", "approve", "approval", "approve_%"],
    "disapproval": ["disapproving", "disapprove", "disapproval", "disapprove_%"],
    "unsure": ["unsure/no_data", "unsure", "no_opinion", "unsure/no_opinion", "no_data"],
}

# Columns every normalized source must carry before concatenation
CANONICAL_COLUMNS = ["president", "date", "approval", "disapproval", "unsure", "source"]


def load_president_sheet_map(path: Path) -> Dict[str, str]:
    """Load a ``{president: sheet_name}`` JSON object to replace PRESIDENT_SHEETS."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sheet map file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        mapping = json.load(f)

    if not isinstance(mapping, dict) or not mapping:
        raise ValueError(f"Sheet map in {path} must be a non-empty JSON object")

    logger.info(f"Loaded sheet map for {len(mapping)} presidents from {path}")
    return {str(k): str(v) for k, v in mapping.items()}


def load_term_start_overrides(path: Path) -> Dict[str, pd.Timestamp]:
    """
    Load a term-start override table from CSV.

    The file needs the columns ``president`` and ``term_start`` (ISO dates).
    Each president may appear only once.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Override file not found: {path}")

    table = pd.read_csv(path)
    missing = {"president", "term_start"} - set(table.columns)
    if missing:
        raise ValueError(f"Override file {path} is missing columns: {sorted(missing)}")

    dupes = table["president"][table["president"].duplicated()].unique().tolist()
    if dupes:
        raise ValueError(f"Override file {path} lists presidents more than once: {dupes}")

    overrides = {
        str(row.president): pd.Timestamp(row.term_start)
        for row in table.itertuples(index=False)
    }
    logger.info(f"Loaded {len(overrides)} term-start overrides from {path}")
    return overrides


# Ensure all directories exist
for directory in [
    DATA_DIR, RAW_DATA_DIR, INTERIM_DATA_DIR,
    PROCESSED_DATA_DIR, EXTERNAL_DATA_DIR,
    REPORTS_DIR, FIGURES_DIR, LOG_DIR
]:
    directory.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured directory exists: {directory}")

# Log configuration complete
logger.info("Configuration loaded")
