"""Configuration dataclasses for the prostate survival workflow.

Each workflow stage has its own configuration block; ``WorkflowConfig``
gathers them and can be saved to / loaded from JSON so that a run can be
reproduced exactly.

Example:
    >>> config = WorkflowConfig.for_run_type("sample")
    >>> config.imputation.method_default
    'pmm'
    >>> config.save("data/outputs/sample/config.json")
"""
from __future__ import annotations
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import os
import json
import multiprocessing


class Strategy(str, Enum):
    """Missing-data strategy applied before model fitting.

    Attributes:
        MULTIPLE_IMPUTATION: M completed copies by chained equations, pooled
        COMPLETE_CASE: Listwise deletion of incomplete records
        MEDIAN: Single fill with the median (numeric) or mode (categorical)
    """
    MULTIPLE_IMPUTATION = "multiple_imputation"
    COMPLETE_CASE = "complete_case"
    MEDIAN = "median"


@dataclass
class ExecutionConfig:
    """Parallelization of the per-imputation model fits.

    Attributes:
        n_jobs: Number of parallel jobs. -1 means use all cores, 1 means sequential
        verbose: Verbosity level for joblib (0=silent, 10=progress bar)
        backend: Joblib backend ('loky', 'threading', 'multiprocessing')

    Example:
        >>> ExecutionConfig().is_parallel()
        False
        >>> ExecutionConfig(n_jobs=4).is_parallel()
        True
    """
    n_jobs: int = 1
    verbose: int = 0
    backend: str = "loky"

    def __post_init__(self):
        """Validate and normalize configuration."""
        if self.n_jobs == -1:
            self.n_jobs = multiprocessing.cpu_count()
        elif self.n_jobs < 1:
            raise ValueError(f"n_jobs must be -1 or positive, got {self.n_jobs}")

    def is_parallel(self) -> bool:
        """Check if parallel execution is enabled."""
        return self.n_jobs > 1

    def __str__(self) -> str:
        return f"ExecutionConfig(n_jobs={self.n_jobs}, parallel={self.is_parallel()})"


@dataclass
class DataConfig:
    """Where the patient records come from and which columns play which role.

    Attributes:
        identifier: Registered dataset name or path to a CSV/pickle file
        data_dir: Directory used to cache registered datasets
        time_column: Follow-up time
        event_column: Outcome column (raw cause of death, then 0/1)
        exclude_columns: Columns kept out of imputation and modelling
    """
    identifier: str = "prostate"
    data_dir: Optional[str] = "data/inputs"
    time_column: str = "dtime"
    event_column: str = "status"
    exclude_columns: Tuple[str, ...] = ("patno", "sdate")


@dataclass
class ProfilerConfig:
    """Missing-data profiling options.

    Attributes:
        tree_target: Variable whose missingness the decision tree predicts
        tree_predictors: Candidate predictors. None means every other
            analysis column
        min_leaf: Minimum number of records in any tree leaf
        max_depth: Maximum tree depth (keeps the tree shallow)
        cluster_method: scipy linkage method for co-missingness clustering
    """
    tree_target: str = "sg"
    tree_predictors: Optional[Tuple[str, ...]] = None
    min_leaf: int = 15
    max_depth: int = 4
    cluster_method: str = "average"

    def __post_init__(self):
        if self.min_leaf < 1:
            raise ValueError(f"min_leaf must be positive, got {self.min_leaf}")
        if self.tree_predictors is not None:
            self.tree_predictors = tuple(self.tree_predictors)


@dataclass
class ImputationConfig:
    """Chained-equation imputation options.

    Attributes:
        n_imputations: Number of completed copies (M). None derives it from
            the fraction of incomplete records: max(5, 100 x fraction)
        method_default: Method for variables without an explicit entry
        methods: Per-variable method ("pmm" or "logreg")
        predictors: Per-variable predictor columns. Variables without an
            entry use every other analysis column
        n_iter: Full imputation cycles per copy
        k_pmm: Donor pool size for predictive mean matching
        perturbation_method: "gaussian" or "boot" parameter perturbation
        random_state: Seed of the first copy; copy m uses random_state + m
        exclude_columns: Columns kept out of the imputation models
    """
    n_imputations: Optional[int] = None
    method_default: str = "pmm"
    methods: Dict[str, str] = field(default_factory=dict)
    predictors: Dict[str, List[str]] = field(default_factory=dict)
    n_iter: int = 10
    k_pmm: int = 5
    perturbation_method: str = "gaussian"
    random_state: int = 42
    exclude_columns: Tuple[str, ...] = ("patno", "sdate")

    def __post_init__(self):
        if self.n_imputations is not None and self.n_imputations < 1:
            raise ValueError(f"n_imputations must be positive, got {self.n_imputations}")
        if self.n_iter < 1:
            raise ValueError(f"n_iter must be positive, got {self.n_iter}")
        self.exclude_columns = tuple(self.exclude_columns)


@dataclass
class ModelConfig:
    """Proportional hazards model specification.

    Attributes:
        covariates: Right-hand side variables
        spline_knots: Covariates modelled with a restricted cubic spline,
            mapped to their number of knots (3 to 7)
        ties: Tied event time handling ("efron" or "breslow")
        max_iter: Maximum Newton-Raphson iterations
        alpha: Significance level of reported confidence intervals
    """
    covariates: Tuple[str, ...] = (
        "rx", "stage", "age", "wt", "pf", "hx", "sbp", "dbp",
        "ekg", "hg", "sz", "sg", "ap", "bm",
    )
    spline_knots: Dict[str, int] = field(default_factory=lambda: {"age": 4})
    ties: str = "efron"
    max_iter: int = 100
    alpha: float = 0.05

    def __post_init__(self):
        self.covariates = tuple(self.covariates)
        for name, k in self.spline_knots.items():
            if not 3 <= k <= 7:
                raise ValueError(f"Spline for '{name}' needs 3 to 7 knots, got {k}")
        if self.ties not in ("efron", "breslow"):
            raise ValueError(f"ties must be 'efron' or 'breslow', got {self.ties}")


@dataclass
class WorkflowConfig:
    """Master configuration for the workflow.

    Attributes:
        data: Loader configuration
        profiler: Missing-data profiler configuration
        imputation: Imputer configuration
        model: Cox model configuration
        execution: Parallelization of per-imputation fits
        strategy: Missing-data strategy applied before fitting
        run_type: "sample" or "production"; selects the output directory
        description: Optional free-text description of the run

    Example:
        >>> config = WorkflowConfig.for_run_type("production")
        >>> config.imputation.n_iter
        20
        >>> config.save("configs/production.json")
        >>> loaded = WorkflowConfig.load("configs/production.json")
    """
    data: DataConfig = field(default_factory=DataConfig)
    profiler: ProfilerConfig = field(default_factory=ProfilerConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    strategy: Strategy = Strategy.MULTIPLE_IMPUTATION
    run_type: str = "sample"
    description: str = ""

    def __post_init__(self):
        if isinstance(self.strategy, str):
            self.strategy = Strategy(self.strategy)

    @classmethod
    def for_run_type(cls, run_type: str) -> "WorkflowConfig":
        """Create configuration for a run type.

        Production runs use more imputation cycles and all cores for the
        per-imputation fits.

        Args:
            run_type: "sample" or "production"

        Returns:
            Configured instance
        """
        if run_type == "production":
            return cls(
                imputation=ImputationConfig(n_iter=20),
                execution=ExecutionConfig(n_jobs=-1),
                run_type=run_type,
            )
        return cls(run_type=run_type)

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-serializable dictionary."""
        def _dataclass_to_dict(obj):
            """Recursively convert dataclass to dict."""
            if hasattr(obj, '__dataclass_fields__'):
                return {
                    k: _dataclass_to_dict(v)
                    for k, v in obj.__dict__.items()
                }
            elif isinstance(obj, Enum):
                return obj.value
            elif isinstance(obj, tuple):
                return list(obj)
            else:
                return obj

        return _dataclass_to_dict(self)

    def save(self, path: str) -> None:
        """Save configuration to JSON file.

        Args:
            path: Path to output JSON file
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "WorkflowConfig":
        """Load configuration from JSON file.

        Args:
            path: Path to input JSON file

        Returns:
            WorkflowConfig instance
        """
        with open(path) as f:
            data = json.load(f)

        def _tupled(d: dict, keys: Tuple[str, ...]) -> dict:
            d = dict(d)
            for k in keys:
                if d.get(k) is not None:
                    d[k] = tuple(d[k])
            return d

        return cls(
            data=DataConfig(**_tupled(data['data'], ("exclude_columns",))),
            profiler=ProfilerConfig(**data['profiler']),
            imputation=ImputationConfig(**data['imputation']),
            model=ModelConfig(**data['model']),
            execution=ExecutionConfig(**data['execution']),
            strategy=data['strategy'],
            run_type=data['run_type'],
            description=data.get('description', ''),
        )
