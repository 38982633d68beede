# traffic_report_src/file_utils.py

import csv
import pandas as pd
from pathlib import Path
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# One row per forecasting method per run
METRICS_HEADER: List[str] = [
    "timestamp",
    "site_id",
    "method",
    "order",
    "seasonal_order",
    "AICc",
    "RMSE",
    "MAE",
    "ljungbox_lag",
    "ljungbox_pvalue",
    "converged",
    "train_obs",
    "holdout",
]


def ensure_dir(path: Path) -> None:
    """
    Create directory if it doesn't exist, including all parent directories.

    No error is raised if the directory already exists.
    """
    Path(path).mkdir(parents=True, exist_ok=True)


def resolve_path(path_str: str, base_dir: Path) -> Path:
    """
    Resolve a path string relative to a base directory if not absolute.

    Examples
    --------
    >>> resolve_path("data/counts.xlsx", Path("/project"))
    PosixPath('/project/data/counts.xlsx')
    >>> resolve_path("/absolute/counts.xlsx", Path("/project"))
    PosixPath('/absolute/counts.xlsx')
    """
    path = Path(path_str)
    return path if path.is_absolute() else (base_dir / path)


def append_metrics_csv_row(csv_path: Optional[Path],
                           row: Dict[str, Any],
                           header: List[str] = METRICS_HEADER) -> None:
    """
    Append a single metrics row to CSV, creating header on first write.

    Parameters
    ----------
    csv_path : Optional[Path]
        Path to metrics CSV file (None to skip writing)
    row : Dict[str, Any]
        Metric values; keys outside ``header`` are ignored, missing keys are blank
    header : List[str]
        Column names for the CSV

    Notes
    -----
    - Creates parent directories if they don't exist
    - Writes header row only if the file doesn't exist yet
    """
    if csv_path is None:
        return

    try:
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        exists = csv_path.exists()

        with csv_path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=header, extrasaction="ignore")
            if not exists:
                writer.writeheader()
            writer.writerow(row)

    except OSError as e:
        logger.error("Failed to append metrics to %s: %s", csv_path, e)


def start_report_md(report_path: Path, title: str) -> None:
    """Create (or overwrite) the markdown report with a title and generation timestamp."""
    ensure_dir(report_path.parent)
    ts = datetime.now(timezone.utc).isoformat(timespec="seconds")
    report_path.write_text(f"# {title}\n\n_generated: {ts}_\n", encoding="utf-8")


def append_report_md(report_path: Path, title: str, body: str) -> None:
    """
    Append a level-2 section to the markdown report.

    Parameters
    ----------
    report_path : Path
        Path to markdown file
    title : str
        Section title
    body : str
        Section content (markdown)
    """
    try:
        with report_path.open("a", encoding="utf-8") as f:
            f.write(f"\n## {title}\n\n")
            f.write(body.strip() + "\n")
    except OSError as e:
        logger.error("Failed to append to report %s: %s", report_path, e)


def _fmt_cell(value: Any, float_digits: int) -> str:
    if isinstance(value, float):
        if pd.isna(value):
            return "n/a"
        return f"{value:.{float_digits}f}"
    return str(value)


def md_table_from_df(df: pd.DataFrame,
                     max_rows: int = 10,
                     columns: Optional[List[str]] = None,
                     float_digits: int = 3) -> str:
    """
    Convert a DataFrame to markdown table format.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to convert
    max_rows : int, default=10
        Maximum number of rows to include
    columns : Optional[List[str]]
        Specific columns to include (None for all); unknown names are ignored
    float_digits : int, default=3
        Decimal places for float cells; NaN renders as ``n/a``

    Returns
    -------
    str
        Markdown table string, or empty string when there are no columns

    Examples
    --------
    >>> print(md_table_from_df(pd.DataFrame({"method": ["naive"], "RMSE": [1.5]})))
    | method | RMSE |
    | --- | --- |
    | naive | 1.500 |
    """
    if columns is not None:
        keep = [c for c in columns if c in df.columns]
        if keep:
            df = df.loc[:, keep]

    df_disp = df.head(max_rows)
    cols = list(df_disp.columns)
    if not cols:
        return ""

    header = "| " + " | ".join(str(c) for c in cols) + " |"
    separator = "| " + " | ".join("---" for _ in cols) + " |"

    rows = []
    for rec in df_disp.itertuples(index=False):
        vals = [_fmt_cell(v, float_digits) for v in rec]
        rows.append("| " + " | ".join(vals) + " |")

    return "\n".join([header, separator] + rows)
