"""Pytest configuration and shared fixtures for the survival analysis tests.

This module provides fixtures for synthetic patient tables, CSV files on
disk, and resets the package logger and MLflow state between tests.
"""
import logging
import pytest
import pandas as pd
import numpy as np
from pathlib import Path

from cancer_survival.config import DataConfig
from cancer_survival.data import recode_patient_table, add_derived_columns
from cancer_survival.logging_config import LOGGER_NAME
from cancer_survival.synthetic import generate_synthetic_data


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def data_config():
    """Default column layout."""
    return DataConfig()


@pytest.fixture(scope="session")
def synthetic_raw():
    """Simulated raw patient table (2,000 records, strings not recoded)."""
    return generate_synthetic_data(n=2000, seed=7)


@pytest.fixture
def small_raw():
    """Hand-written raw table covering every deprivation level and both statuses."""
    return pd.DataFrame({
        "deprivation_score": ["leastdep", "2", "3", "4", "mostdep", "2", "leastdep", "mostdep"],
        "region": ["North", "South", "North", "East", "South", "East", "North", "South"],
        "age_at_diagnosis": [54.0, 61.0, 70.0, 48.0, 66.0, 59.0, 73.0, 81.0],
        "death_status": ["alive/ce", "dead", "alive/ce", "dead", "dead", "alive/ce", "dead", "dead"],
        "survival_time": [5.0, 1.2, 4.8, 2.5, 0.7, 3.3, 2.5, 1.9],
    })


@pytest.fixture
def synthetic_table(synthetic_raw):
    """Recoded synthetic table with derived event indicator and patient id."""
    return add_derived_columns(recode_patient_table(synthetic_raw))


@pytest.fixture
def synthetic_csv(tmp_path, synthetic_raw):
    """Write the synthetic raw table to a CSV file and return its path."""
    path = tmp_path / "bc_data.csv"
    synthetic_raw.to_csv(path, index=False)
    return path


@pytest.fixture
def sample_durations_events():
    """Small right-censored sample with a tie and a censored record at a death time."""
    durations = np.array([2.0, 3.0, 3.0, 5.0])
    events = np.array([1, 1, 0, 1])
    return durations, events


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Detach handlers added by setup_logging so tests don't leak log files."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture(autouse=True)
def cleanup_mlflow_runs():
    """Clean up MLflow tracking URIs after each test.

    Ensures tests don't interfere with each other's MLflow tracking.
    """
    import mlflow
    yield
    if mlflow.active_run() is not None:
        mlflow.end_run()
    mlflow.set_tracking_uri(None)
