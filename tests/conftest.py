"""Pytest configuration and shared fixtures for prostate survival tests.

The real trial data is fetched over the network, so tests run on a
synthetic 502-record frame with the same columns, raw outcome labels,
factor levels and a realistic amount of missing data.
"""
import logging

import numpy as np
import pandas as pd
import pytest

from prostate_survival.cleaning import clean_status
from prostate_survival.data import CATEGORY_LEVELS, apply_schema

N_PATIENTS = 502

DEATH_CAUSES = [
    "dead - prostatic ca",
    "dead - heart or vascular",
    "dead - cerebrovascular",
    "dead - pulmonary embolus",
    "dead - other ca",
    "dead - respiratory disease",
    "dead - other specific non-ca",
    "dead - unspecified non-ca",
    "dead - unknown cause",
]

# Number of missing cells planted per column
MISSING_CELLS = {"age": 1, "wt": 2, "ekg": 8, "sz": 5, "sg": 11}


def make_prostate(n: int = N_PATIENTS, seed: int = 20240501) -> pd.DataFrame:
    """Build a raw prostate-like frame (string outcome and factors, NaN gaps)."""
    rng = np.random.default_rng(seed)

    age = np.clip(np.round(rng.normal(71, 7, n)), 48, 89)
    wt = np.round(rng.normal(99, 13, n))
    stage = rng.choice([3, 4], size=n, p=[0.57, 0.43])
    rx = rng.choice(CATEGORY_LEVELS["rx"], size=n)
    pf = rng.choice(CATEGORY_LEVELS["pf"], size=n, p=[0.86, 0.07, 0.04, 0.03])
    hx = rng.binomial(1, 0.42, n)
    sbp = np.round(rng.normal(14.4, 2.4, n))
    dbp = np.round(rng.normal(8.2, 1.5, n))
    ekg = rng.choice(
        CATEGORY_LEVELS["ekg"], size=n, p=[0.33, 0.06, 0.05, 0.05, 0.22, 0.14, 0.15]
    )
    hg = np.round(rng.normal(13.4, 1.9, n), 1)
    sz = np.clip(np.round(np.abs(rng.normal(12, 11, n))), 0, 69)
    sg = np.clip(np.round(rng.normal(10.3, 2.0, n)), 5, 15)
    ap = np.round(np.exp(rng.normal(-0.5, 1.3, n)), 2)
    bm = rng.binomial(1, 0.16, n)

    linear = (
        0.04 * (age - 71)
        + 0.5 * bm
        + 0.3 * hx
        + 0.05 * (sz - 12)
        + 0.15 * (sg - 10)
        - 0.3 * (rx == "1.0 mg estrogen")
    )
    event_time = rng.exponential(1.0 / (0.025 * np.exp(linear)))
    censor_time = rng.uniform(20, 76, n)
    dtime = np.round(np.minimum(event_time, censor_time))
    dead = event_time <= censor_time
    status = np.where(dead, rng.choice(DEATH_CAUSES, size=n), "alive")

    df = pd.DataFrame({
        "patno": np.arange(1, n + 1),
        "stage": stage,
        "rx": rx,
        "dtime": dtime,
        "status": status,
        "age": age,
        "wt": wt,
        "pf": pf,
        "hx": hx,
        "sbp": sbp,
        "dbp": dbp,
        "ekg": ekg.astype(object),
        "hg": hg,
        "sz": sz,
        "sg": sg,
        "ap": ap,
        "bm": bm,
        "sdate": rng.integers(2778, 3137, n),
    })

    for col, k in MISSING_CELLS.items():
        rows = rng.choice(n, size=k, replace=False)
        df.loc[rows, col] = np.nan
    return df


def _reset_package_logger():
    logger = logging.getLogger("prostate_survival")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging so package records reach pytest's caplog."""
    _reset_package_logger()
    yield
    _reset_package_logger()


@pytest.fixture
def missing_cells():
    """Planted missing cells per column of the synthetic records."""
    return dict(MISSING_CELLS)


@pytest.fixture
def raw_prostate():
    """Raw synthetic records as they would come from the CSV.

    Returns:
        pd.DataFrame: 502 records, outcome still as cause-of-death labels
    """
    return make_prostate()


@pytest.fixture
def prostate(raw_prostate):
    """Schema applied and outcome recoded to 0/1.

    Returns:
        pd.DataFrame: Cleaned synthetic records
    """
    return clean_status(apply_schema(raw_prostate))


@pytest.fixture
def complete_prostate(prostate):
    """Cleaned records with every missing cell filled by the column median/mode.

    Returns:
        pd.DataFrame: Cleaned records without missing values
    """
    out = prostate.copy()
    for col in MISSING_CELLS:
        if isinstance(out[col].dtype, pd.CategoricalDtype):
            out[col] = out[col].fillna(out[col].mode().iloc[0])
        else:
            out[col] = out[col].fillna(out[col].median())
    return out


@pytest.fixture
def prostate_csv(raw_prostate, tmp_path):
    """Write the raw synthetic records to CSV.

    Returns:
        Path: Path to the CSV file
    """
    path = tmp_path / "prostate.csv"
    raw_prostate.to_csv(path, index=False)
    return path
