from __future__ import annotations
import os
import logging
from typing import Dict, Any, Optional
import mlflow
import mlflow.exceptions

EXPERIMENT_NAME = "breast_cancer_survival"


def sqlite_tracking_uri(mlruns_dir: str) -> str:
    """Return a SQLite tracking URI for a database inside ``mlruns_dir``.

    Example:
        >>> sqlite_tracking_uri("/data/outputs/sample/mlruns")
        'sqlite:////data/outputs/sample/mlruns/mlflow.db'
    """
    db_path = os.path.join(os.path.abspath(mlruns_dir), "mlflow.db")
    return f"sqlite:///{db_path}"


def start_run(
    run_name: str,
    tags: Dict[str, str] | None = None,
    tracking_uri: Optional[str] = None,
    artifact_location: Optional[str] = None,
):
    """Start an MLflow run under the breast_cancer_survival experiment.

    Args:
        run_name: Name identifier for this run
        tags: Optional dictionary of key-value tags to attach to the run
        tracking_uri: Optional tracking store (e.g. a SQLite database URI)
        artifact_location: Artifact root used when the experiment is first created

    Returns:
        Active MLflow run context manager

    Raises:
        MlflowException: If the tracking store cannot be reached

    Example:
        >>> with start_run("sample_breast_cancer_survival", tracking_uri=sqlite_tracking_uri("mlruns")):
        ...     safe_log_metrics({"concordance": 0.61})
    """
    if tracking_uri:
        mlflow.set_tracking_uri(tracking_uri)
    if artifact_location and mlflow.get_experiment_by_name(EXPERIMENT_NAME) is None:
        mlflow.create_experiment(EXPERIMENT_NAME, artifact_location=artifact_location)
    mlflow.set_experiment(EXPERIMENT_NAME)
    return mlflow.start_run(run_name=run_name, tags=tags)


# ============================================================================
# Safe MLflow Wrappers with Graceful Degradation
# ============================================================================


def safe_start_run(
    run_name: str,
    tags: Dict[str, str] | None = None,
    tracking_uri: Optional[str] = None,
    artifact_location: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
):
    """Start an MLflow run, returning None if the tracking store is unusable.

    Returns:
        Active MLflow run, or None if MLflow failed
    """
    try:
        return start_run(run_name, tags=tags, tracking_uri=tracking_uri, artifact_location=artifact_location)
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow tracking unavailable, run not tracked: {e}")
        return None


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log metrics to MLflow with error handling.

    If MLflow fails, logs a warning and continues; the same values are
    written to the output tables regardless.

    Args:
        metrics: Dictionary of metric names and values
        step: Optional step number
        logger: Optional logger for warnings

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        mlflow.log_metrics({k: float(v) for k, v in metrics.items()}, step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow metrics logging failed: {e}")
        return False


def safe_log_params(
    params: Dict[str, Any],
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log parameters to MLflow with error handling.

    Non-scalar values are logged as strings.

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        for k, v in params.items():
            if not isinstance(v, (str, int, float, bool)):
                v = str(v)
            mlflow.log_param(k, v)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow params logging failed: {e}")
        return False


def safe_log_artifact(
    path: str,
    logger: Optional[logging.Logger] = None,
    artifact_path: Optional[str] = None,
) -> bool:
    """Log a file artifact to MLflow with error handling.

    Args:
        path: File path to log as artifact
        logger: Optional logger for warnings
        artifact_path: Optional sub-directory within the run's artifacts

    Returns:
        True if logging succeeded, False if the file is missing or MLflow failed
    """
    if not os.path.exists(path):
        if logger:
            logger.warning(f"Artifact not found, skipping: {path}")
        return False

    try:
        mlflow.log_artifact(path, artifact_path=artifact_path)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow artifact logging failed for {path}: {e}")
        return False
