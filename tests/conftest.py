import numpy as np
import pandas as pd
import pytest

COUNT_HEADER = [
    "Site ID", "Year", "Date", "Day", "Hour", "Rank", "Volume",
    "Volume Dec", "K Factor", "D Factor", "Unused 1", "Unused 2",
]


def hourly_count_rows(site_id, start, days, base, amplitude, seed):
    """Rows of the counts sheet for ``days`` consecutive days, hours recorded 1..24."""
    rng = np.random.default_rng(seed)
    rows = []
    for day in pd.date_range(start, periods=days, freq="D"):
        for hour in range(1, 25):
            vol = base + amplitude * np.sin(2 * np.pi * (hour - 7) / 24) + rng.normal(0, 10)
            vol = max(0.0, round(vol))
            rows.append([
                site_id, day.year, day.to_pydatetime(), day.day_name(), hour, 0, vol,
                round(vol / 2), 0.09, 0.55, None, None,
            ])
    return rows


def write_workbook(path, count_rows, site_rows, title_rows=3):
    """Write a workbook shaped like the DOT export: title rows, then a 12-column counts table."""
    width = len(COUNT_HEADER)
    notes = ["Hourly Traffic Counts", "Source: continuous count stations", "Hours are hour-ending"]
    titles = [[notes[i % len(notes)]] + [None] * (width - 1) for i in range(title_rows)]
    counts = pd.DataFrame(titles + [COUNT_HEADER] + list(count_rows))
    sites = pd.DataFrame(site_rows, columns=["Site ID", "Lat, Long", "Description"])
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        counts.to_excel(writer, sheet_name="Counts", header=False, index=False)
        sites.to_excel(writer, sheet_name="Sites", index=False)
    return path


@pytest.fixture
def traffic_workbook(tmp_path):
    """Two sites: 1001 with ten days in 2021, 2002 with two days in each of 2020 and 2021."""
    rows = hourly_count_rows(1001, "2021-05-01", 10, base=300, amplitude=200, seed=1)
    rows += hourly_count_rows(2002, "2020-05-01", 2, base=100, amplitude=50, seed=2)
    rows += hourly_count_rows(2002, "2021-05-01", 2, base=140, amplitude=50, seed=3)
    sites = [
        [1001, "44.9778,-93.2650", "I-94 at Riverside"],
        [2002, "44.9537, -93.0900", "US-52 north of downtown"],
        [3003, "not recorded", "decommissioned"],
    ]
    return write_workbook(tmp_path / "traffic_counts.xlsx", rows, sites)
