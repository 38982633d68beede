# traffic_report_src/data_utils.py

import re
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


# Positional layout of the hourly counts sheet; the last two columns are unused.
COUNT_COLUMNS: List[str] = [
    "site_id",
    "year",
    "count_date",
    "day_of_week",
    "hour",
    "rank",
    "volume",
    "volume_dec",
    "k_factor",
    "d_factor",
    "unused_1",
    "unused_2",
]
NUMERIC_COUNT_COLUMNS = ["year", "hour", "rank", "volume", "volume_dec", "k_factor", "d_factor"]


class DataLayoutError(Exception):
    """Raised when the workbook does not have the expected sheets or columns."""


def normalize_column_name(name: object) -> str:
    """
    Normalize a spreadsheet header to snake_case.

    Examples
    --------
    >>> normalize_column_name("Lat, Long")
    'lat_long'
    >>> normalize_column_name(" Site ID ")
    'site_id'
    """
    txt = str(name).strip().lower()
    txt = re.sub(r"[^0-9a-z]+", "_", txt)
    return txt.strip("_")


def _read_sheet(path: Path, sheet_name: str, **kwargs) -> pd.DataFrame:
    try:
        return pd.read_excel(path, sheet_name=sheet_name, **kwargs)
    except ValueError as e:
        # pandas raises ValueError for an unknown sheet name
        raise DataLayoutError(f"Sheet '{sheet_name}' could not be read from {path}: {e}") from e


def read_counts_sheet(path: Path, sheet_name: str = "Counts", skip_rows: int = 3) -> pd.DataFrame:
    """
    Read the per-hour, per-site counts sheet into a tidy DataFrame.

    The sheet carries a fixed number of title rows above the header and twelve
    columns in a fixed order: site id, year, count date, day of week, hour, volume
    rank, traffic volume, decreasing-direction volume, K-factor, D-factor and two
    unused columns. Columns are renamed by position, so the header text itself is
    not relied on.

    Parameters
    ----------
    path : Path
        Workbook path (.xlsx)
    sheet_name : str, default="Counts"
        Name of the counts sheet
    skip_rows : int, default=3
        Number of title rows above the header row

    Returns
    -------
    pd.DataFrame
        Columns: site_id, year, count_date, day_of_week, hour, rank, volume,
        volume_dec, k_factor, d_factor. Sorted by site and date/hour.

    Raises
    ------
    DataLayoutError
        If the sheet is missing, has the wrong number of columns, or contains no
        parseable rows.
    """
    df = _read_sheet(path, sheet_name, skiprows=skip_rows)

    # Trailing blank columns are harmless; the two unused columns may be absent entirely.
    n_required = len(COUNT_COLUMNS) - 2
    extra = df.iloc[:, len(COUNT_COLUMNS):]
    if df.shape[1] < n_required or extra.notna().any().any():
        raise DataLayoutError(
            f"Counts sheet '{sheet_name}' has {df.shape[1]} columns; expected {n_required} to "
            f"{len(COUNT_COLUMNS)}. Check skip_rows (currently {skip_rows})."
        )

    df = df.iloc[:, :len(COUNT_COLUMNS)].copy()
    df.columns = COUNT_COLUMNS[:df.shape[1]]
    df = df.drop(columns=[c for c in ("unused_1", "unused_2") if c in df.columns])

    df["site_id"] = clean_site_ids(df["site_id"])
    df["count_date"] = pd.to_datetime(df["count_date"], errors="coerce")
    for col in NUMERIC_COUNT_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["day_of_week"] = df["day_of_week"].astype("string").str.strip()

    before = len(df)
    df = df.dropna(subset=["site_id", "count_date", "hour"])
    df = df[df["site_id"] != ""]
    if len(df) < before:
        logger.info("Dropped %d count rows without site, date or hour.", before - len(df))

    if df.empty:
        raise DataLayoutError(f"No valid rows found in counts sheet '{sheet_name}' after parsing.")

    df["hour"] = df["hour"].astype(int)
    return df.sort_values(["site_id", "count_date", "hour"]).reset_index(drop=True)


def split_lat_long(values: pd.Series) -> pd.DataFrame:
    """
    Split a combined ``"latitude,longitude"`` text column into two numeric columns.

    Unparseable entries become NaN in both columns.

    Examples
    --------
    >>> split_lat_long(pd.Series(["44.97,-93.26"])).iloc[0].tolist()
    [44.97, -93.26]
    """
    parts = values.astype("string").str.extract(r"^\s*([^,]+?)\s*,\s*([^,]+?)\s*$")
    return pd.DataFrame(
        {
            "latitude": pd.to_numeric(parts[0], errors="coerce"),
            "longitude": pd.to_numeric(parts[1], errors="coerce"),
        },
        index=values.index,
    )


def clean_site_ids(ids: pd.Series) -> pd.Series:
    """
    Normalize site identifiers to stripped strings.

    Excel hands back numeric ids as floats when the column has blanks, so whole
    numbers are converted through an integer dtype first ("1234.0" -> "1234").
    """
    if pd.api.types.is_numeric_dtype(ids):
        numeric = pd.to_numeric(ids, errors="coerce")
        if (numeric.dropna() % 1 == 0).all():
            return numeric.astype("Int64").astype("string")
    return ids.astype("string").str.strip()


def read_sites_sheet(path: Path,
                     sheet_name: str = "Sites",
                     site_id_column: str = "site_id",
                     location_column: str = "lat_long") -> pd.DataFrame:
    """
    Read the per-site metadata sheet and split the location field.

    Headers are normalized with :func:`normalize_column_name` before the site id
    and location columns are looked up, so "Site ID" and "Lat, Long" match the
    defaults.

    Returns
    -------
    pd.DataFrame
        Site metadata with ``site_id``, ``latitude`` and ``longitude`` columns.

    Raises
    ------
    DataLayoutError
        If either configured column is missing.
    """
    df = _read_sheet(path, sheet_name)
    df.columns = [normalize_column_name(c) for c in df.columns]

    id_col = normalize_column_name(site_id_column)
    loc_col = normalize_column_name(location_column)
    missing = [c for c in (id_col, loc_col) if c not in df.columns]
    if missing:
        raise DataLayoutError(
            f"Sites sheet '{sheet_name}' is missing column(s) {missing}; found {list(df.columns)}"
        )

    coords = split_lat_long(df[loc_col])
    df = df.drop(columns=[loc_col]).rename(columns={id_col: "site_id"})
    df["site_id"] = clean_site_ids(df["site_id"])
    df = pd.concat([df, coords], axis=1)

    n_bad = int(coords.isna().any(axis=1).sum())
    if n_bad:
        logger.warning("%d site(s) have an unparseable location field.", n_bad)

    return df.dropna(subset=["site_id"]).reset_index(drop=True)


def load_traffic_workbook(path: Path,
                          counts_sheet: str = "Counts",
                          sites_sheet: str = "Sites",
                          skip_rows: int = 3,
                          site_id_column: str = "site_id",
                          location_column: str = "lat_long") -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load both sheets of the traffic count workbook.

    Parameters
    ----------
    path : Path
        Workbook path
    counts_sheet, sites_sheet : str
        Sheet names
    skip_rows : int
        Title rows above the counts header
    site_id_column, location_column : str
        Column names in the sites sheet (normalized before lookup)

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (counts, sites)

    Raises
    ------
    DataLayoutError
        If the file is missing or either sheet has an unexpected layout.
    """
    path = Path(path)
    if not path.is_file():
        raise DataLayoutError(f"Workbook not found: {path}")

    logger.info("Loading traffic workbook from: %s", path)
    counts = read_counts_sheet(path, counts_sheet, skip_rows)
    sites = read_sites_sheet(path, sites_sheet, site_id_column, location_column)
    logger.info("Loaded %d count rows across %d sites; %d site records.",
                len(counts), counts["site_id"].nunique(), len(sites))
    return counts, sites


def pick_default_site(counts: pd.DataFrame) -> str:
    """
    Choose the site with the most hourly observations.

    Used when no site is configured. Ties resolve to the lexicographically
    smallest id so the choice is stable between runs.
    """
    if counts.empty:
        raise DataLayoutError("No count rows available to choose a site from.")
    sizes = counts.groupby("site_id").size()
    best = sizes[sizes == sizes.max()].index
    return str(sorted(best)[0])


def describe_counts(counts: pd.DataFrame) -> pd.DataFrame:
    """Per-site summary: observation count, date span and volume statistics."""
    agg = counts.groupby("site_id").agg(
        n_obs=("volume", "size"),
        first_date=("count_date", "min"),
        last_date=("count_date", "max"),
        mean_volume=("volume", "mean"),
        missing_volume=("volume", lambda s: int(s.isna().sum())),
    )
    agg["mean_volume"] = agg["mean_volume"].round(1)
    return agg.reset_index().sort_values("n_obs", ascending=False).reset_index(drop=True)


def site_metadata(sites: pd.DataFrame, site_id: str) -> Optional[pd.Series]:
    """Return the metadata row for ``site_id`` or None when the site is not listed."""
    rows = sites[sites["site_id"] == str(site_id)]
    if rows.empty:
        return None
    return rows.iloc[0]
