from __future__ import annotations
from typing import Sequence
import logging

import numpy as np
import pandas as pd
from scipy import stats

from prostate_survival.models import CoxFit

logger = logging.getLogger("prostate_survival.validation")


def ph_assumption_flags(fit: CoxFit) -> pd.DataFrame:
    """Check proportional hazards assumption using scaled Schoenfeld residuals.

    Residuals at the event times are scaled as ``d * r @ cov`` (d events),
    and each coefficient is tested for a trend against the rank of the event
    time with the Grambsch-Therneau score statistic, chi-squared on one
    degree of freedom. Low p-values flag coefficients where proportional
    hazards may not hold. ``rho`` is the correlation between the scaled
    residuals and the time ranks.

    Args:
        fit: A CoxFit from ``fit_cox``

    Returns:
        DataFrame indexed by term with columns ['rho', 'test_statistic',
        'schoenfeld_p'], sorted by p-value (most problematic first)

    Raises:
        ValueError: If the fit carries no residuals

    Example:
        >>> flags = ph_assumption_flags(fits[0])
        >>> violations = flags[flags['schoenfeld_p'] < 0.05]
        >>> print(f"PH violations detected for: {violations.index.tolist()}")
    """
    if fit.schoenfeld is None or fit.times is None:
        raise ValueError("Fit has no Schoenfeld residuals")

    resid = np.asarray(fit.schoenfeld, dtype=float)
    events = ~np.isnan(resid).any(axis=1)
    n_events = int(events.sum())
    cov = np.asarray(fit.cov, dtype=float)
    scaled = n_events * resid[events] @ cov

    ranks = stats.rankdata(fit.times[events])
    centred = ranks - ranks.mean()
    ss = float((centred ** 2).sum())

    rows = []
    for j, name in enumerate(fit.names):
        r = scaled[:, j]
        if n_events < 3 or np.ptp(r) == 0 or ss == 0:
            rho, statistic, p = np.nan, np.nan, np.nan
        else:
            rho = stats.pearsonr(ranks, r)[0]
            statistic = float(centred @ r) ** 2 / (n_events * cov[j, j] * ss)
            p = stats.chi2.sf(statistic, df=1)
        rows.append({
            "term": name,
            "rho": float(rho),
            "test_statistic": float(statistic),
            "schoenfeld_p": float(p),
        })

    out = pd.DataFrame(rows).set_index("term").sort_values("schoenfeld_p")
    return out


def pooled_ph_flags(fits: Sequence[CoxFit]) -> pd.DataFrame:
    """Proportional hazards checks summarised over imputations.

    Returns:
        DataFrame indexed by term with the median ``rho`` and
        ``schoenfeld_p`` across fits, and ``n_flagged``: in how many fits
        p < 0.05. Sorted by median p-value.
    """
    tables = [ph_assumption_flags(fit) for fit in fits]
    stacked = pd.concat(tables, keys=range(len(tables)), names=["imputation"])
    grouped = stacked.groupby(level="term", sort=False)
    out = pd.DataFrame({
        "rho": grouped["rho"].median(),
        "schoenfeld_p": grouped["schoenfeld_p"].median(),
        "n_flagged": grouped["schoenfeld_p"].apply(lambda p: int((p < 0.05).sum())),
    })
    n_flagged = int((out["schoenfeld_p"] < 0.05).sum())
    if n_flagged:
        logger.warning(f"{n_flagged} terms have median Schoenfeld p < 0.05")
    return out.sort_values("schoenfeld_p")
