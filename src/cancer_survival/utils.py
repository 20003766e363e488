from __future__ import annotations
import os
import datetime as dt
from typing import Optional
import pandas as pd


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Creates the specified directory path, including any necessary parent
    directories. Does nothing if the directory already exists.

    Args:
        path: Directory path to create

    Example:
        >>> ensure_dir("data/outputs/sample/figures")
    """
    os.makedirs(path, exist_ok=True)


def versioned_name(base: str, run_type: Optional[str] = None) -> str:
    """Generate timestamped name for versioning.

    Args:
        base: Base name without extension
        run_type: Optional run type ("sample" or "production") to prefix the name

    Returns:
        Versioned name in format "[runtype_]base_YYYYMMDD_HHMMSS"

    Example:
        >>> versioned_name("breast_cancer_survival", run_type="sample")
        'sample_breast_cancer_survival_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    if run_type:
        return f"{run_type}_{base}_{ts}"
    return f"{base}_{ts}"


def get_output_paths(base_dir: str) -> dict:
    """Get standardized output directory paths under ``base_dir``.

    Args:
        base_dir: Root output directory of the run

    Returns:
        Dictionary with keys:
        - base_dir: Root output directory
        - figures: Directory for chart PNGs
        - tables: Directory for CSV and text tables
        - logs: Directory for log files
        - mlruns: Directory for MLflow tracking

    Example:
        >>> paths = get_output_paths("data/outputs/sample")
        >>> paths["figures"]
        'data/outputs/sample/figures'

    Notes:
        - All paths are created if they don't exist
    """
    paths = {
        "base_dir": base_dir,
        "figures": os.path.join(base_dir, "figures"),
        "tables": os.path.join(base_dir, "tables"),
        "logs": os.path.join(base_dir, "logs"),
        "mlruns": os.path.join(base_dir, "mlruns"),
    }

    for path in paths.values():
        ensure_dir(path)

    return paths


def save_table(df: pd.DataFrame, outdir: str, name: str) -> str:
    """Save a DataFrame to ``outdir/name`` as CSV without the index.

    Returns:
        Full path to the saved CSV file
    """
    ensure_dir(outdir)
    path = os.path.join(outdir, name)
    df.to_csv(path, index=False)
    return path


def save_text(text: str, outdir: str, name: str) -> str:
    """Save rendered text (e.g. a formatted table) to ``outdir/name``.

    Returns:
        Full path to the saved file
    """
    ensure_dir(outdir)
    path = os.path.join(outdir, name)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text.rstrip("\n") + "\n")
    return path
