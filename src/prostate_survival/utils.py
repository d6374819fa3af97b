from __future__ import annotations
import os
import datetime as dt
from typing import Literal, Optional

# Run type for distinguishing sample vs production runs
RunType = Literal["sample", "production"]


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Args:
        path: Directory path to create

    Example:
        >>> ensure_dir("data/outputs/sample/figures")
    """
    os.makedirs(path, exist_ok=True)


def versioned_name(base: str, run_type: Optional[RunType] = None) -> str:
    """Generate timestamped filename for versioning.

    Args:
        base: Base filename without extension
        run_type: Optional run type ("sample" or "production") to prefix filename

    Returns:
        Versioned name in format "[runtype_]base_YYYYMMDD_HHMMSS"

    Example:
        >>> versioned_name("pooled_cox", run_type="sample")
        'sample_pooled_cox_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    if run_type:
        return f"{run_type}_{base}_{ts}"
    return f"{base}_{ts}"


def get_output_paths(run_type: RunType = "sample", base_dir: Optional[str] = None) -> dict:
    """Get standardized output directory paths for a given run type.

    Args:
        run_type: Type of run - "sample" for development, "production" for full data
        base_dir: Override for the root output directory. Defaults to
            data/outputs/{run_type}

    Returns:
        Dictionary with keys:
        - base_dir: Root output directory for this run type
        - tables: CSV tables (missingness, chains, pooled summary)
        - figures: PNG plots (dendrogram, decision tree)
        - models: Joblib dumps of the pooled model
        - logs: Log files

    Example:
        >>> paths = get_output_paths("sample")
        >>> paths["figures"]
        'data/outputs/sample/figures'
    """
    base_dir = base_dir or f"data/outputs/{run_type}"

    paths = {
        "base_dir": base_dir,
        "tables": os.path.join(base_dir, "tables"),
        "figures": os.path.join(base_dir, "figures"),
        "models": os.path.join(base_dir, "models"),
        "logs": os.path.join(base_dir, "logs"),
    }

    for path in paths.values():
        ensure_dir(path)

    return paths
