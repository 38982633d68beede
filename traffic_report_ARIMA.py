#!/usr/bin/env python3
"""
Seasonal ARIMA report on hourly per-site traffic counts.

Usage
-----
    python traffic_report_ARIMA.py --help
    python traffic_report_ARIMA.py --workbook data/traffic_counts.xlsx --site 1234
    python traffic_report_ARIMA.py --order 2,0,1 --seasonal-order 1,0,1 --auto-strategy grid

The implementation lives in traffic_report_src/; see traffic_report_src/main.py.
"""

from traffic_report_src.main import main

if __name__ == "__main__":
    main()
