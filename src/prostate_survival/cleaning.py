"""Recoding of the raw outcome field into a binary event indicator.

The raw prostate data stores the outcome as a cause-of-death label:
``"alive"`` or ``"dead - <cause>"``. Survival models need 1 = death,
0 = censored.
"""
from __future__ import annotations
import logging

import numpy as np
import pandas as pd

from prostate_survival.data import EVENT_COL
from prostate_survival.errors import UnrecognizedCategory

logger = logging.getLogger("prostate_survival.cleaning")


def _to_event(value):
    """Map a single raw status value to 1, 0, or None when unrecognized."""
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, (int, np.integer, float, np.floating)):
        if value in (0, 1):
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if "dead" in text:
            return 1
        if "alive" in text:
            return 0
        if text in ("0", "1"):
            return int(text)
    return None


def clean_status(df: pd.DataFrame, column: str = EVENT_COL) -> pd.DataFrame:
    """Collapse the cause-of-death field into a 0/1 event indicator.

    Values containing "dead" map to 1 and values containing "alive" map to 0
    (case-insensitive). Values that are already 0 or 1 are kept, so cleaning
    an already-clean frame returns an equal frame.

    Args:
        df: Patient records with the raw outcome column
        column: Name of the outcome column. Defaults to "status"

    Returns:
        New DataFrame whose outcome column has integer dtype and only 0/1 values.
        The input frame is not modified.

    Raises:
        KeyError: If the outcome column is absent
        UnrecognizedCategory: If any value (including a missing one) matches
            neither rule

    Example:
        >>> raw = pd.DataFrame({"status": ["alive", "dead - prostatic ca"]})
        >>> clean_status(raw)["status"].tolist()
        [0, 1]
    """
    if column not in df.columns:
        raise KeyError(f"Outcome column '{column}' not found")

    raw = df[column]
    mapped = [_to_event(v) if not pd.isna(v) else None for v in raw.tolist()]
    bad = [v for v, m in zip(raw.tolist(), mapped) if m is None]
    if bad:
        distinct = list(dict.fromkeys("<missing>" if pd.isna(v) else v for v in bad))
        logger.error(f"{len(bad)} records with unrecognized '{column}' values")
        raise UnrecognizedCategory(column, distinct)

    out = df.copy()
    out[column] = pd.Series(mapped, index=df.index, dtype="int64")

    counts = event_counts(out, column)
    logger.info(
        f"Recoded '{column}': {counts.get(1, 0)} events, {counts.get(0, 0)} censored"
    )
    return out


def event_counts(df: pd.DataFrame, column: str = EVENT_COL) -> pd.Series:
    """Count events (1) and censored records (0).

    Args:
        df: Cleaned patient records
        column: Event indicator column

    Returns:
        Series indexed by 0 and 1 with record counts
    """
    return df[column].value_counts().reindex([0, 1], fill_value=0)
