from __future__ import annotations
from typing import Dict, List, Literal, Optional
import logging
from pathlib import Path

import pandas as pd

from prostate_survival.errors import DataUnavailable, SchemaMismatch

# Run type for distinguishing sample vs production runs
RunType = Literal["sample", "production"]

logger = logging.getLogger("prostate_survival.data")

# Registered datasets that can be requested by name
DATASETS: Dict[str, str] = {
    "prostate": "https://hbiostat.org/data/repo/prostate.csv",
}

ID_COL = "patno"
TIME_COL = "dtime"
EVENT_COL = "status"

# Factor levels, reference level first
CATEGORY_LEVELS: Dict[str, List[str]] = {
    "rx": ["placebo", "0.2 mg estrogen", "1.0 mg estrogen", "5.0 mg estrogen"],
    "pf": [
        "normal activity",
        "in bed < 50% daytime",
        "in bed > 50% daytime",
        "confined to bed",
    ],
    "ekg": [
        "normal",
        "benign",
        "rhythmic disturb & electrolyte ch",
        "heart block or conduction def",
        "heart strain",
        "old MI",
        "recent MI",
    ],
}
CAT_COLS = list(CATEGORY_LEVELS)
BINARY_COLS = ["hx", "bm"]
NUM_COLS = ["stage", "age", "wt", "sbp", "dbp", "hg", "sz", "sg", "ap"]
REQUIRED_COLS = ["rx", TIME_COL, EVENT_COL]

# Columns that never enter imputation or modelling
NON_ANALYSIS_COLS = [ID_COL, "sdate"]


def load_data(
    identifier: str = "prostate",
    data_dir: Optional[str] = None,
    run_type: RunType = "sample",
) -> pd.DataFrame:
    """Load the patient records from a file or a registered dataset.

    ``identifier`` is either a path to a CSV or pickle file, or the name of a
    registered dataset (see ``DATASETS``). A registered dataset is read from
    ``<data_dir>/<name>.csv`` when that cached copy exists, otherwise from its
    URL; a freshly downloaded copy is written to ``data_dir`` when given.

    Args:
        identifier: File path or registered dataset name. Defaults to "prostate"
        data_dir: Optional directory used to cache registered datasets
        run_type: "sample" or "production"; only used for log messages

    Returns:
        DataFrame with the declared schema applied (see ``apply_schema``)

    Raises:
        DataUnavailable: If the file does not exist, the name is not
            registered, or the remote source cannot be read
        ValueError: If the file format is not supported
        SchemaMismatch: If required columns are missing

    Example:
        >>> df = load_data("prostate", data_dir="data/inputs")
        >>> df.shape
        (502, 18)
    """
    path = Path(identifier)

    if path.suffix:
        df = _read_file(path, run_type)
    elif identifier in DATASETS:
        df = _read_registered(identifier, data_dir, run_type)
    else:
        raise DataUnavailable(
            f"Unknown dataset '{identifier}'. Registered datasets: {sorted(DATASETS)}"
        )

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns")
    return apply_schema(df)


def _read_file(path: Path, run_type: RunType) -> pd.DataFrame:
    if not path.exists():
        raise DataUnavailable(f"Data file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        logger.info(f"Loading CSV data from {path} (run_type={run_type})")
        return pd.read_csv(path)
    if suffix in [".pkl", ".pickle"]:
        logger.info(f"Loading pickle data from {path} (run_type={run_type})")
        return pd.read_pickle(path)
    raise ValueError(
        f"Unsupported file format: {suffix}. "
        f"Supported formats: .csv, .pkl, .pickle"
    )


def _read_registered(name: str, data_dir: Optional[str], run_type: RunType) -> pd.DataFrame:
    if data_dir is not None:
        cached = Path(data_dir) / f"{name}.csv"
        if cached.exists():
            return _read_file(cached, run_type)

    url = DATASETS[name]
    logger.info(f"Fetching dataset '{name}' from {url}")
    try:
        df = pd.read_csv(url)
    except OSError as e:
        raise DataUnavailable(f"Could not fetch dataset '{name}' from {url}: {e}") from e

    if data_dir is not None:
        Path(data_dir).mkdir(parents=True, exist_ok=True)
        df.to_csv(Path(data_dir) / f"{name}.csv", index=False)
        logger.info(f"Cached dataset '{name}' in {data_dir}")
    return df


def apply_schema(df: pd.DataFrame) -> pd.DataFrame:
    """Cast factor columns to categoricals with the declared level order.

    Levels found in the data but not declared are appended after the declared
    ones (with a warning) rather than being turned into missing values.

    Args:
        df: Raw patient records

    Returns:
        New DataFrame with categorical dtypes for ``CAT_COLS`` that are present

    Raises:
        SchemaMismatch: If any of ``REQUIRED_COLS`` is absent
    """
    missing_cols = [col for col in REQUIRED_COLS if col not in df.columns]
    if missing_cols:
        raise SchemaMismatch(
            f"Required columns {missing_cols} not found. "
            f"Available columns: {list(df.columns)}"
        )

    out = df.copy()
    for col, levels in CATEGORY_LEVELS.items():
        if col not in out.columns:
            continue
        observed = [v for v in pd.unique(out[col].dropna()) if v not in levels]
        if observed:
            logger.warning(f"Column '{col}' has undeclared levels {observed}; appending them")
        out[col] = pd.Categorical(out[col], categories=levels + sorted(observed, key=str))
    return out


def analysis_columns(df: pd.DataFrame, exclude: Optional[List[str]] = None) -> List[str]:
    """Return the columns that take part in imputation and modelling.

    Args:
        df: Patient records
        exclude: Columns to leave out. Defaults to ``NON_ANALYSIS_COLS``

    Returns:
        Column names in frame order
    """
    exclude = NON_ANALYSIS_COLS if exclude is None else exclude
    return [col for col in df.columns if col not in exclude]
