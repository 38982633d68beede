# traffic_report_src/parsing_utils.py

import argparse
from typing import List, Optional, Sequence, Tuple, Union
import logging

logger = logging.getLogger(__name__)


def parse_order_arg(value: Union[str, Sequence[int], None],
                    length: int,
                    name: str = "order") -> Optional[Tuple[int, ...]]:
    """
    Parse a model order given as "1,0,1" (CLI) or [1, 0, 1] (config) into a tuple.

    Parameters
    ----------
    value : str or sequence of int or None
        Order specification; None passes through
    length : int
        Expected number of entries (3 for (p,d,q), 4 for (P,D,Q,s))
    name : str
        Used in error messages

    Returns
    -------
    Optional[Tuple[int, ...]]

    Raises
    ------
    ValueError
        On a wrong number of entries, non-integers or negative values

    Examples
    --------
    >>> parse_order_arg("1,0,1", 3)
    (1, 0, 1)
    >>> parse_order_arg([2, 0, 2, 24], 4)
    (2, 0, 2, 24)
    """
    if value is None:
        return None
    if isinstance(value, str):
        parts = [x.strip() for x in value.replace("(", "").replace(")", "").split(",") if x.strip() != ""]
    else:
        parts = list(value)
    try:
        out = tuple(int(x) for x in parts)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid {name} {value!r}: entries must be integers") from e
    if len(out) != length:
        raise ValueError(f"Invalid {name} {value!r}: expected {length} comma-separated integers")
    if any(v < 0 for v in out):
        raise ValueError(f"Invalid {name} {value!r}: entries must be non-negative")
    return out


def seasonal_order_with_period(value: Union[str, Sequence[int], None],
                               seasonal_period: int) -> Optional[Tuple[int, int, int, int]]:
    """
    Accept a seasonal order as (P,D,Q) or (P,D,Q,s); a missing s is filled from ``seasonal_period``.

    An explicit s must equal ``seasonal_period`` unless P = D = Q = 0.

    Raises
    ------
    ValueError
        For malformed entries or a period that disagrees with ``seasonal_period``.
    """
    if value is None:
        return None
    parts = value.split(",") if isinstance(value, str) else list(value)
    if len([p for p in parts if str(p).strip() != ""]) == 3:
        P, D, Q = parse_order_arg(value, 3, "seasonal order")
        return P, D, Q, int(seasonal_period)
    P, D, Q, s = parse_order_arg(value, 4, "seasonal order")
    if (P or D or Q) and s != int(seasonal_period):
        raise ValueError(
            f"Seasonal order {value!r} uses period {s} but the seasonal period is {seasonal_period}; "
            "set --seasonal-period instead")
    return P, D, Q, s


def parse_intervals_arg(s: Optional[str], default: str = "80,95") -> List[int]:
    """
    Parse a CLI intervals argument like '80,95' into sorted unique integer coverage levels.

    Values outside 1..99 are dropped; an empty result falls back to [80, 95].

    Examples
    --------
    >>> parse_intervals_arg("80,95")
    [80, 95]
    >>> parse_intervals_arg("90")
    [90]
    """
    txt = (s or default).strip()
    try:
        vals = sorted({int(x.strip()) for x in txt.split(",") if x.strip() != ""})
    except ValueError:
        logger.warning("Could not parse intervals %r; using 80,95.", s)
        return [80, 95]
    vals = [v for v in vals if 1 <= v < 100]
    return vals or [80, 95]


def validate_strategy(strategy: str) -> str:
    """
    Validate the automatic order search strategy.

    Raises
    ------
    argparse.ArgumentTypeError
        If the strategy is not "stepwise" or "grid"
    """
    valid = ["stepwise", "grid"]
    value = strategy.strip().lower()
    if value not in valid:
        raise argparse.ArgumentTypeError(f"Invalid search strategy '{strategy}'. Must be one of: {valid}")
    return value


def validate_log_level(log_level: str) -> str:
    """
    Validate and normalize logging level specification.

    Raises
    ------
    ValueError
        If the logging level is not supported
    """
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    level_upper = log_level.upper()
    if level_upper not in valid_levels:
        raise ValueError(f"Invalid log level '{log_level}'. Must be one of: {valid_levels}")
    return level_upper
