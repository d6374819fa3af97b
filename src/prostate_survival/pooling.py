"""Combination of per-imputation Cox fits with Rubin's rules.

For m fits with estimates Q_i and covariances U_i:

- pooled estimate: Qbar = mean(Q_i)
- within-imputation variance: Ubar = mean(U_i)
- between-imputation variance: B = cov(Q_i) with ddof=1 (zero when m = 1)
- total variance: T = Ubar + (1 + 1/m) B
- relative increase in variance: r = (1 + 1/m) diag(B) / diag(Ubar)
- degrees of freedom: (m - 1)(1 + 1/r)^2, infinite when B is zero
- fraction of missing information: (r + 2/(df + 3)) / (r + 1)

Example:
    >>> pooled = pool_fits(fits, alpha=0.05)
    >>> pooled.summary()[["hr", "hr_lower", "hr_upper", "p"]]
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Sequence
import logging

import numpy as np
import pandas as pd
from scipy import stats

from prostate_survival.models import CoxFit

logger = logging.getLogger("prostate_survival.pooling")


@dataclass
class PooledCoxModel:
    """Proportional hazards model pooled over imputations.

    Attributes:
        names: Coefficient names
        params: Pooled log hazard ratios
        within: Mean within-imputation covariance (Ubar)
        between: Between-imputation covariance (B)
        total: Total covariance (T)
        n_imputations: Number of pooled fits
        dof: Degrees of freedom per coefficient
        riv: Relative increase in variance per coefficient
        fmi: Fraction of missing information per coefficient
        alpha: Significance level of the confidence intervals
        diagnostics: One row per imputation (events, log likelihood, ...)
        formula: Formula shared by the pooled fits
    """
    names: List[str]
    params: np.ndarray
    within: np.ndarray
    between: np.ndarray
    total: np.ndarray
    n_imputations: int
    dof: np.ndarray
    riv: np.ndarray
    fmi: np.ndarray
    alpha: float = 0.05
    diagnostics: pd.DataFrame = field(default_factory=pd.DataFrame, repr=False)
    formula: str = ""

    @property
    def bse(self) -> np.ndarray:
        return np.sqrt(np.diag(self.total))

    def summary(self) -> pd.DataFrame:
        """Coefficient table with hazard ratios and pooled inference.

        Returns:
            DataFrame indexed by term with columns coef, se, hr, z, dof, p,
            lower, upper, hr_lower, hr_upper, riv and fmi. p-values and
            intervals use a t distribution with the pooled degrees of
            freedom (normal where they are infinite).
        """
        se = self.bse
        with np.errstate(divide="ignore", invalid="ignore"):
            z = self.params / se
        finite = np.isfinite(self.dof)
        dof = np.where(finite, self.dof, 1.0)
        p = np.where(finite, 2 * stats.t.sf(np.abs(z), dof), 2 * stats.norm.sf(np.abs(z)))
        q = np.where(
            finite,
            stats.t.ppf(1 - self.alpha / 2, dof),
            stats.norm.ppf(1 - self.alpha / 2),
        )
        lower = self.params - q * se
        upper = self.params + q * se
        return pd.DataFrame(
            {
                "coef": self.params,
                "se": se,
                "hr": np.exp(self.params),
                "z": z,
                "dof": self.dof,
                "p": p,
                "lower": lower,
                "upper": upper,
                "hr_lower": np.exp(lower),
                "hr_upper": np.exp(upper),
                "riv": self.riv,
                "fmi": self.fmi,
            },
            index=pd.Index(self.names, name="term"),
        )


def diagnostics_table(fits: Sequence[CoxFit]) -> pd.DataFrame:
    """One row per fit: records, events, log likelihood and convergence."""
    rows = []
    for i, fit in enumerate(fits):
        rows.append({
            "imputation": i if fit.imputation is None else fit.imputation,
            "n_obs": fit.n_obs,
            "n_events": fit.n_events,
            "loglik": fit.loglik,
            "converged": fit.converged,
        })
    return pd.DataFrame(rows)


def pool_fits(fits: Sequence[CoxFit], alpha: float = 0.05) -> PooledCoxModel:
    """Pool Cox fits with Rubin's rules.

    The result does not depend on the order of ``fits``. Pooling m identical
    fits returns the single-fit estimates with zero between-imputation
    variance.

    Args:
        fits: One CoxFit per completed dataset
        alpha: Significance level of the confidence intervals

    Returns:
        PooledCoxModel

    Raises:
        ValueError: If ``fits`` is empty or the fits have different
            coefficient names
    """
    fits = list(fits)
    if not fits:
        raise ValueError("Cannot pool an empty list of fits")

    names = list(fits[0].names)
    for fit in fits[1:]:
        if list(fit.names) != names:
            raise ValueError(
                f"Fits have different coefficients: {names} vs {list(fit.names)}"
            )

    m = len(fits)
    estimates = np.vstack([fit.params for fit in fits])
    covs = np.stack([fit.cov for fit in fits])
    # Averaged as offsets from the first fit, exact when all fits agree
    qbar = estimates[0] + (estimates - estimates[0]).mean(axis=0)
    ubar = covs[0] + (covs - covs[0]).mean(axis=0)
    if m > 1:
        deviations = estimates - qbar
        between = deviations.T @ deviations / (m - 1)
    else:
        between = np.zeros_like(ubar)
    total = ubar + (1 + 1 / m) * between

    b = np.diag(between)
    u = np.diag(ubar)
    riv = (1 + 1 / m) * b / u
    with np.errstate(divide="ignore", invalid="ignore"):
        dof = np.where(b > 0, (m - 1) * (1 + 1 / riv) ** 2, np.inf)
    fmi = np.where(np.isfinite(dof), (riv + 2 / (dof + 3)) / (riv + 1), 0.0)

    logger.info(
        f"Pooled {m} fits over {len(names)} coefficients; "
        f"max fraction of missing information {float(np.max(fmi, initial=0.0)):.3f}"
    )
    return PooledCoxModel(
        names=names,
        params=qbar,
        within=ubar,
        between=between,
        total=total,
        n_imputations=m,
        dof=dof,
        riv=riv,
        fmi=fmi,
        alpha=alpha,
        diagnostics=diagnostics_table(fits),
        formula=fits[0].formula,
    )
