"""
Charts comparing Trump-era approval with his predecessors.

Every chart function takes the processed approval table and returns a
matplotlib Figure; ``save_figure`` writes it to the figures directory.
Event markers and callout text are curated by hand and live in TRUMP_EVENTS.
"""

import math
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger
import matplotlib
import matplotlib.dates as mdates
import matplotlib.pyplot as plt
import pandas as pd
import typer

from approval_ratings.config import (
    FIGURES_DIR,
    PRESIDENT_SHEETS,
    PROCESSED_DATA_DIR,
    PROCESSED_FILENAME,
    TRUMP,
    load_president_sheet_map,
)
from approval_ratings.dataset import (
    PIPELINE_ERRORS,
    build_approval_dataset,
    load_processed_dataset,
    save_dataframe_to_csv,
)

# Render to files only; no display needed
matplotlib.use("Agg")

app = typer.Typer()

# First term, counting the leap day
FIRST_TERM_DAYS = 4 * 365 + 1

PREDECESSOR_COLOR = "#9e9e9e"
HIGHLIGHT_COLOR = "#d62728"
DISAPPROVAL_COLOR = "#1f77b4"
EVENT_COLOR = "#555555"

TRUMP_EVENTS: List[Tuple[str, str]] = [
    ("2017-01-27", "Travel ban order"),
    ("2017-08-12", "Charlottesville rally"),
    ("2017-12-22", "Tax cuts signed"),
    ("2018-12-22", "Government shutdown begins"),
    ("2019-12-18", "House impeachment vote"),
    ("2020-03-13", "COVID-19 national emergency"),
]


def _sorted_groups(df: pd.DataFrame, by: str = "days_in_office") -> Dict[str, pd.DataFrame]:
    """Split the table by president (in order of appearance), each sorted along ``by``."""
    return {
        president: group.sort_values(by)
        for president, group in df.groupby("president", sort=False)
    }


def _roster(df: pd.DataFrame, presidents: Optional[Sequence[str]], highlight: str) -> List[str]:
    """
    Predecessors to draw, in roster order.

    The roster defaults to PRESIDENT_SHEETS, so a president whose sheet was empty
    still gets a line or panel.  Presidents present in the table but not in the
    roster are appended.
    """
    if presidents is None:
        presidents = list(PRESIDENT_SHEETS)
    roster = [p for p in presidents if p != highlight]
    roster += [p for p in df["president"].unique() if p != highlight and p not in roster]
    return roster


def _no_data(ax, message: str = "no data") -> None:
    ax.text(0.5, 0.5, message, transform=ax.transAxes, ha="center", va="center",
            fontsize=11, color=EVENT_COLOR)


def _plot_against_days(
    df: pd.DataFrame,
    column: str,
    title: str,
    ylabel: str,
    highlight: str = TRUMP,
    presidents: Optional[Sequence[str]] = None,
) -> plt.Figure:
    """
    Predecessors in grey, the highlighted president on top with a callout at the last point.

    Predecessors without records are named in a "no data" note in the corner.
    """
    fig, ax = plt.subplots(figsize=(12, 7))
    groups = _sorted_groups(df)

    missing = []
    for president in _roster(df, presidents, highlight):
        group = groups.get(president)
        if group is None or group.empty:
            missing.append(president)
            continue
        ax.plot(group["days_in_office"], group[column],
                color=PREDECESSOR_COLOR, linewidth=1, alpha=0.6)

    if missing:
        logger.warning(f"No records to plot for {missing}")
        ax.text(0.01, 0.01, f"no data: {', '.join(missing)}", transform=ax.transAxes,
                ha="left", va="bottom", fontsize=9, color=EVENT_COLOR)

    focus = groups.get(highlight)
    if focus is not None and not focus.empty:
        ax.plot(focus["days_in_office"], focus[column],
                color=HIGHLIGHT_COLOR, linewidth=2.5, label=highlight, zorder=5)
        last = focus.iloc[-1]
        ax.annotate(
            f"{highlight}: {last[column]:.1f}",
            xy=(last["days_in_office"], last[column]),
            xytext=(10, 10),
            textcoords="offset points",
            color=HIGHLIGHT_COLOR,
            fontweight="bold",
            arrowprops=dict(arrowstyle="-", color=HIGHLIGHT_COLOR),
        )
        ax.legend(loc="upper right", framealpha=0.95)
    elif df.empty:
        _no_data(ax)

    ax.set_xlabel("Days in office", fontsize=12)
    ax.set_ylabel(ylabel, fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig


def plot_approval_by_days_in_office(
    df: pd.DataFrame,
    highlight: str = TRUMP,
    presidents: Optional[Sequence[str]] = None,
) -> plt.Figure:
    """Approval of every president against days in office."""
    return _plot_against_days(
        df, "approval",
        title="Presidential Approval by Days in Office",
        ylabel="Approve (%)",
        highlight=highlight,
        presidents=presidents,
    )


def plot_net_approval_by_days_in_office(
    df: pd.DataFrame,
    highlight: str = TRUMP,
    presidents: Optional[Sequence[str]] = None,
) -> plt.Figure:
    """Net approval (approve minus disapprove) against days in office."""
    fig = _plot_against_days(
        df, "net_approval",
        title="Net Approval by Days in Office",
        ylabel="Approve minus disapprove (pp)",
        highlight=highlight,
        presidents=presidents,
    )
    fig.axes[0].axhline(0, color="black", linewidth=1, linestyle=":")
    return fig


def plot_unsure_by_days_in_office(
    df: pd.DataFrame,
    highlight: str = TRUMP,
    presidents: Optional[Sequence[str]] = None,
) -> plt.Figure:
    """Share of respondents with no opinion against days in office."""
    return _plot_against_days(
        df, "unsure",
        title="Undecided Share by Days in Office",
        ylabel="Unsure / no opinion (%)",
        highlight=highlight,
        presidents=presidents,
    )


def plot_trump_approval_timeline(
    df: pd.DataFrame,
    events: Optional[Sequence[Tuple[str, str]]] = None,
) -> plt.Figure:
    """
    Trump approval and disapproval over calendar time with event markers.

    Events outside the range of the data are skipped.
    """
    if events is None:
        events = TRUMP_EVENTS

    trump = df[df["president"] == TRUMP].sort_values("date")
    fig, ax = plt.subplots(figsize=(14, 7))

    if trump.empty:
        _no_data(ax, f"no {TRUMP} records")
    else:
        ax.plot(trump["date"], trump["approval"], color=HIGHLIGHT_COLOR, linewidth=2, label="Approve")
        ax.plot(trump["date"], trump["disapproval"], color=DISAPPROVAL_COLOR, linewidth=2, label="Disapprove")

        ymin, ymax = ax.get_ylim()
        ax.set_ylim(ymin, ymax + 5)
        first, last = trump["date"].min(), trump["date"].max()

        for when, label in events:
            when = pd.Timestamp(when)
            if not first <= when <= last:
                logger.debug(f"Skipping event '{label}' outside {first.date()}..{last.date()}")
                continue
            ax.axvline(when, color=EVENT_COLOR, linewidth=1, linestyle="--", zorder=1)
            ax.text(when, ymax + 4.5, label, rotation=90, va="top", ha="right",
                    fontsize=9, color=EVENT_COLOR)

        ax.legend(loc="lower left", framealpha=0.95)
        ax.xaxis.set_major_formatter(mdates.DateFormatter("%b %Y"))
        ax.xaxis.set_major_locator(mdates.MonthLocator(interval=3))
        plt.setp(ax.xaxis.get_majorticklabels(), rotation=45, ha="right")

    ax.set_xlabel("Date", fontsize=12)
    ax.set_ylabel("Share of adults (%)", fontsize=12)
    ax.set_title(f"{TRUMP} Approval and Disapproval", fontsize=14, fontweight="bold")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig


def plot_first_term_small_multiples(
    df: pd.DataFrame,
    highlight: str = TRUMP,
    ncols: int = 4,
    presidents: Optional[Sequence[str]] = None,
) -> plt.Figure:
    """
    One panel per predecessor's first term with the highlighted president overlaid.

    A predecessor with no records inside the first term gets an empty panel
    labelled "no data".
    """
    first_term = df[(df["days_in_office"] >= 0) & (df["days_in_office"] <= FIRST_TERM_DAYS)]
    groups = _sorted_groups(first_term)
    predecessors = _roster(df, presidents, highlight)

    nrows = max(1, math.ceil(len(predecessors) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3.2 * nrows),
                             sharex=True, sharey=True, squeeze=False)
    axes = axes.flatten()
    focus = groups.get(highlight)

    for ax, president in zip(axes, predecessors):
        group = groups.get(president)
        if group is None or group.empty:
            _no_data(ax)
        else:
            ax.plot(group["days_in_office"], group["approval"], color=DISAPPROVAL_COLOR, linewidth=1.5)
        if focus is not None and not focus.empty:
            ax.plot(focus["days_in_office"], focus["approval"],
                    color=HIGHLIGHT_COLOR, linewidth=1, alpha=0.8)
        ax.set_title(president, fontsize=11, fontweight="bold")
        ax.grid(True, alpha=0.2)

    if not predecessors:
        _no_data(axes[0], "no predecessors")

    # remove empty subplots
    for ax in axes[max(1, len(predecessors)):]:
        ax.set_visible(False)

    fig.suptitle(f"First-Term Approval, Predecessors vs {highlight} (red)",
                 fontsize=14, fontweight="bold")
    fig.supxlabel("Days in office")
    fig.supylabel("Approve (%)")
    fig.tight_layout()
    return fig


CHARTS: Dict[str, Callable[[pd.DataFrame], plt.Figure]] = {
    "approval_by_days_in_office": plot_approval_by_days_in_office,
    "trump_approval_timeline": plot_trump_approval_timeline,
    "net_approval_by_days_in_office": plot_net_approval_by_days_in_office,
    "unsure_by_days_in_office": plot_unsure_by_days_in_office,
    "first_term_small_multiples": plot_first_term_small_multiples,
}


def save_figure(fig: plt.Figure, name: str, output_dir: Path = FIGURES_DIR, dpi: int = 150) -> Path:
    """Write a figure as PNG and close it."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{name}.png"
    fig.savefig(output_path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Saved chart to {output_path}")
    return output_path


def render_all_charts(
    df: pd.DataFrame,
    output_dir: Path = FIGURES_DIR,
    presidents: Optional[Sequence[str]] = None,
) -> List[Path]:
    """Render every chart in CHARTS to ``output_dir``; ``presidents`` sets the predecessor roster."""
    paths = []
    for name, plot in CHARTS.items():
        # the timeline shows the highlighted president only
        fig = plot(df) if plot is plot_trump_approval_timeline else plot(df, presidents=presidents)
        paths.append(save_figure(fig, name, output_dir))
    return paths


@app.command()
def main(
    input_path: Path = PROCESSED_DATA_DIR / f"{PROCESSED_FILENAME}.csv",
    output_dir: Path = FIGURES_DIR,
    rebuild: bool = typer.Option(False, help="Rebuild the approval table from the raw sources first"),
    sheet_map_file: Optional[Path] = typer.Option(
        None, help="JSON object mapping president name to workbook sheet name"
    ),
):
    """
    Render all approval charts.

    Args:
        input_path: Processed approval table; built from the raw sources if missing
        output_dir: Directory for the PNG files
        rebuild: Ignore an existing processed table and rebuild it
        sheet_map_file: Optional JSON replacing the built-in president-to-sheet map;
            its presidents are also the roster of predecessors drawn
    """
    try:
        sheet_map = load_president_sheet_map(sheet_map_file) if sheet_map_file else None

        if rebuild or not Path(input_path).exists():
            logger.info("Processed approval table not available, building it from raw sources")
            approval = build_approval_dataset(sheet_map=sheet_map)
            save_dataframe_to_csv(approval, Path(input_path).stem, Path(input_path).parent)
        else:
            approval = load_processed_dataset(input_path)

        paths = render_all_charts(approval, output_dir, list(sheet_map) if sheet_map else None)
        logger.success(f"Rendered {len(paths)} charts to {output_dir}")
    except PIPELINE_ERRORS as e:
        logger.error(f"Chart rendering failed: {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
