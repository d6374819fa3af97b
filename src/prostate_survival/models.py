"""Proportional hazards model specification and fitting.

Models are fitted with statsmodels ``PHReg`` from a patsy formula. Continuous
covariates can enter as restricted cubic splines (patsy ``cr`` with a
centering constraint), with knots placed at Harrell's default quantiles of a
reference dataset so that every imputed copy shares one basis.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import logging
import warnings

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from patsy import cr
from statsmodels.duration.hazard_regression import PHReg
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from prostate_survival.config import ModelConfig
from prostate_survival.data import EVENT_COL, TIME_COL
from prostate_survival.errors import ConvergenceFailure
from prostate_survival.logging_config import ProgressLogger

logger = logging.getLogger("prostate_survival.models")

# Harrell's default knot quantiles by number of knots
KNOT_QUANTILES: Dict[int, Tuple[float, ...]] = {
    3: (0.10, 0.50, 0.90),
    4: (0.05, 0.35, 0.65, 0.95),
    5: (0.05, 0.275, 0.50, 0.725, 0.95),
    6: (0.05, 0.23, 0.41, 0.59, 0.77, 0.95),
    7: (0.025, 0.1833, 0.3417, 0.50, 0.6583, 0.8167, 0.975),
}


@dataclass
class CoxModelSpec:
    """What to regress and how.

    Attributes:
        duration: Follow-up time column
        event: Event indicator column (1 = death, 0 = censored)
        covariates: Right-hand side variables
        splines: Covariates modelled with a restricted cubic spline, mapped
            to their number of knots
        ties: "efron" or "breslow"
        max_iter: Maximum Newton-Raphson iterations

    Example:
        >>> spec = CoxModelSpec(covariates=("rx", "age", "pf"), splines={"age": 4})
        >>> build_formula(spec, df)
        "dtime ~ rx + cr(age, knots=(60.0, 73.0), lower_bound=56.0, ...) + pf"
    """
    duration: str = TIME_COL
    event: str = EVENT_COL
    covariates: Tuple[str, ...] = ("rx", "age")
    splines: Dict[str, int] = field(default_factory=dict)
    ties: str = "efron"
    max_iter: int = 100

    def __post_init__(self):
        self.covariates = tuple(self.covariates)
        unknown = [name for name in self.splines if name not in self.covariates]
        if unknown:
            raise ValueError(f"Spline terms {unknown} are not covariates")
        for name, k in self.splines.items():
            if k not in KNOT_QUANTILES:
                raise ValueError(f"Spline for '{name}' needs 3 to 7 knots, got {k}")

    @classmethod
    def from_config(cls, config: ModelConfig, duration: str = TIME_COL, event: str = EVENT_COL):
        return cls(
            duration=duration,
            event=event,
            covariates=config.covariates,
            splines=dict(config.spline_knots),
            ties=config.ties,
            max_iter=config.max_iter,
        )


def spline_knots(values, n_knots: int) -> np.ndarray:
    """Knot locations at Harrell's default quantiles.

    Args:
        values: Observed covariate values (missing values are ignored)
        n_knots: Number of knots, 3 to 7

    Returns:
        Strictly increasing array of ``n_knots`` knot locations

    Raises:
        ValueError: If ``n_knots`` is out of range or the values are too
            concentrated to give distinct knots
    """
    if n_knots not in KNOT_QUANTILES:
        raise ValueError(f"n_knots must be between 3 and 7, got {n_knots}")
    x = np.asarray(pd.Series(values, dtype=float).dropna())
    if x.size == 0:
        raise ValueError("Cannot place knots without observed values")
    knots = np.quantile(x, KNOT_QUANTILES[n_knots])
    if np.any(np.diff(knots) <= 0):
        raise ValueError(
            f"Knots {knots.tolist()} are not distinct; use fewer knots for this covariate"
        )
    return knots


def _spline_term(name: str, values, knots: np.ndarray) -> str:
    inner = tuple(float(k) for k in knots[1:-1])
    lower, upper = float(knots[0]), float(knots[-1])
    # Centering constraint fixed from the reference data, shared by every dataset
    basis = np.asarray(cr(values, knots=inner, lower_bound=lower, upper_bound=upper))
    center = [[float(v) for v in basis.mean(axis=0)]]
    return (
        f"cr({name}, knots={inner!r}, lower_bound={lower!r}, "
        f"upper_bound={upper!r}, constraints={center!r})"
    )


def build_formula(spec: CoxModelSpec, reference: pd.DataFrame) -> str:
    """Build the patsy formula for ``spec``.

    Spline covariates become ``cr(x, knots=..., lower_bound=...,
    upper_bound=..., constraints=...)``: a natural cubic spline with
    ``n_knots - 1`` degrees of freedom. Knots and the centering constraint come from
    ``reference``.

    Args:
        spec: Model specification
        reference: Data used to place spline knots (the cleaned,
            pre-imputation records)

    Returns:
        Formula string ``"<duration> ~ <terms>"``

    Raises:
        KeyError: If a covariate is not a column of ``reference``
    """
    missing_cols = [c for c in spec.covariates if c not in reference.columns]
    if missing_cols:
        raise KeyError(f"Covariates {missing_cols} not found in data")

    terms = []
    for name in spec.covariates:
        if name in spec.splines:
            observed = pd.Series(reference[name], dtype=float).dropna().to_numpy()
            knots = spline_knots(observed, spec.splines[name])
            terms.append(_spline_term(name, observed, knots))
        else:
            terms.append(name)
    return f"{spec.duration} ~ " + " + ".join(terms)


@dataclass
class CoxFit:
    """One fitted proportional hazards model.

    Attributes:
        names: Coefficient names
        params: Log hazard ratios
        cov: Covariance matrix of ``params``
        loglik: Partial log likelihood at the estimate
        n_obs: Records used in the fit
        n_events: Events among them
        converged: Whether Newton-Raphson converged
        imputation: Index of the completed dataset (None for a single fit)
        formula: Formula the model was fitted with
        schoenfeld: Schoenfeld residuals (records x coefficients, NaN for
            censored records)
        times: Follow-up times of the records used
    """
    names: List[str]
    params: np.ndarray
    cov: np.ndarray
    loglik: float
    n_obs: int
    n_events: int
    converged: bool = True
    imputation: Optional[int] = None
    formula: str = ""
    schoenfeld: Optional[np.ndarray] = field(default=None, repr=False)
    times: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def bse(self) -> np.ndarray:
        return np.sqrt(np.diag(self.cov))

    def summary(self) -> pd.DataFrame:
        """Coefficient table: coef, se, hazard ratio and z statistic."""
        se = self.bse
        return pd.DataFrame(
            {
                "coef": self.params,
                "se": se,
                "hr": np.exp(self.params),
                "z": self.params / se,
            },
            index=pd.Index(self.names, name="term"),
        )


def _model_frame(df: pd.DataFrame, spec: CoxModelSpec) -> pd.DataFrame:
    cols = [spec.duration, spec.event] + [c for c in spec.covariates if c not in (spec.duration, spec.event)]
    data = df[cols].copy()
    for col in spec.covariates:
        if isinstance(data[col].dtype, pd.CategoricalDtype):
            # Empty levels would give all-zero dummy columns and a singular information matrix
            data[col] = data[col].cat.remove_unused_categories()
    return data


def fit_cox(
    df: pd.DataFrame,
    spec: CoxModelSpec,
    formula: Optional[str] = None,
    imputation: Optional[int] = None,
) -> CoxFit:
    """Fit one proportional hazards model.

    Records with a missing value in any model variable are dropped.

    Args:
        df: Cleaned (or completed) patient records
        spec: Model specification
        formula: Pre-built formula. Defaults to ``build_formula(spec, df)``
        imputation: Index of the completed dataset, used in messages

    Returns:
        CoxFit with estimates, covariance and residuals

    Raises:
        ConvergenceFailure: If Newton-Raphson does not converge within
            ``spec.max_iter`` iterations, the information matrix is singular,
            or the estimates are not finite
    """
    formula = formula or build_formula(spec, df)
    data = _model_frame(df, spec)

    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        try:
            model = PHReg.from_formula(
                formula, data, status=spec.event, ties=spec.ties, missing="drop"
            )
            result = model.fit(maxiter=spec.max_iter)
            cov = np.asarray(result.cov_params())
        except ConvergenceWarning as e:
            raise ConvergenceFailure(
                f"Cox fit did not converge in {spec.max_iter} iterations: {e}", imputation
            ) from e
        except np.linalg.LinAlgError as e:
            raise ConvergenceFailure(f"Singular information matrix: {e}", imputation) from e

    params = np.asarray(result.params, dtype=float)
    if not (np.all(np.isfinite(params)) and np.all(np.isfinite(cov))):
        raise ConvergenceFailure("Cox fit produced non-finite estimates", imputation)

    status = np.asarray(model.status)
    fit = CoxFit(
        names=list(model.exog_names),
        params=params,
        cov=cov,
        loglik=float(result.llf),
        n_obs=int(model.nobs),
        n_events=int(status.sum()),
        converged=True,
        imputation=imputation,
        formula=formula,
        schoenfeld=np.asarray(result.schoenfeld_residuals),
        times=np.asarray(model.endog, dtype=float),
    )
    logger.debug(
        f"Cox fit{'' if imputation is None else f' {imputation}'}: "
        f"n={fit.n_obs}, events={fit.n_events}, loglik={fit.loglik:.3f}"
    )
    return fit


def fit_imputed(
    datasets: Iterable[pd.DataFrame],
    spec: CoxModelSpec,
    formula: Optional[str] = None,
    n_jobs: int = 1,
    backend: str = "loky",
    verbose: int = 0,
) -> List[CoxFit]:
    """Fit one proportional hazards model per completed dataset.

    Args:
        datasets: Completed copies (an ``ImputedDatasets`` or a list)
        spec: Model specification
        formula: Formula shared by all fits. Defaults to one built from the
            first dataset; pass one built from the pre-imputation data to
            keep spline knots independent of the imputations
        n_jobs: Parallel jobs; 1 fits sequentially and logs progress after
            each fit
        backend: joblib backend for parallel fits
        verbose: joblib verbosity

    Returns:
        List of CoxFit in dataset order

    Raises:
        ConvergenceFailure: If any fit fails; names the imputation index
        ValueError: If no datasets are given
    """
    datasets = list(datasets)
    if not datasets:
        raise ValueError("No datasets to fit")
    formula = formula or build_formula(spec, datasets[0])

    if n_jobs != 1 and len(datasets) > 1:
        logger.info(f"Fitting {len(datasets)} Cox models with {n_jobs} parallel jobs")
        fits = Parallel(n_jobs=n_jobs, backend=backend, verbose=verbose)(
            delayed(fit_cox)(df, spec, formula, m) for m, df in enumerate(datasets)
        )
    else:
        progress = ProgressLogger(logger, total=len(datasets), desc="Cox fits")
        fits = []
        for m, df in enumerate(datasets):
            fit = fit_cox(df, spec, formula, m)
            fits.append(fit)
            progress.update(1, metrics={"events": fit.n_events, "loglik": fit.loglik})

    return list(fits)
