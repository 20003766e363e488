from __future__ import annotations
from typing import Optional
import numpy as np
import pandas as pd

from cancer_survival.config import DataConfig
from cancer_survival.data import DeprivationScore, DeathStatus, levels_of

REGIONS = ("East", "London", "North East", "North West", "South East", "South West")

# Log-hazard ratios of the simulated proportional-hazards model
AGE_EFFECT = 0.03  # per year
DEPRIVATION_EFFECTS = {
    DeprivationScore.LEAST.value: 0.0,
    DeprivationScore.SECOND.value: 0.05,
    DeprivationScore.THIRD.value: 0.10,
    DeprivationScore.FOURTH.value: 0.18,
    DeprivationScore.MOST.value: 0.30,
}
REGION_EFFECTS = {
    "East": 0.0,
    "London": -0.10,
    "North East": 0.12,
    "North West": 0.08,
    "South East": -0.05,
    "South West": 0.02,
}


def generate_synthetic_data(
    n: int = 69199,
    seed: int = 42,
    base_hazard: float = 0.06,
    max_follow_up: float = 10.0,
    config: Optional[DataConfig] = None,
) -> pd.DataFrame:
    """Simulate a patient table with a known proportional-hazards structure.

    Event times are exponential with rate
    ``base_hazard * exp(AGE_EFFECT * (age - 60) + dep_effect + region_effect)``.
    Censoring combines an independent exponential drop-out with administrative
    censoring at ``max_follow_up`` years.

    Args:
        n: Number of records
        seed: Random seed
        base_hazard: Yearly hazard of the reference patient (aged 60)
        max_follow_up: End of follow-up in years
        config: Column layout; defaults to ``DataConfig()``

    Returns:
        DataFrame with the input-file schema (raw strings, not recoded)
    """
    config = config or DataConfig()
    rng = np.random.default_rng(seed)

    deprivation = rng.choice(levels_of(DeprivationScore), size=n, p=[0.22, 0.21, 0.2, 0.19, 0.18])
    region = rng.choice(REGIONS, size=n, p=[0.18, 0.16, 0.12, 0.2, 0.2, 0.14])
    age = np.clip(rng.normal(loc=62.0, scale=12.0, size=n), 20.0, 99.0).round(0)

    linpred = (
        AGE_EFFECT * (age - 60.0)
        + np.vectorize(DEPRIVATION_EFFECTS.get)(deprivation)
        + np.vectorize(REGION_EFFECTS.get)(region)
    )
    rates = base_hazard * np.exp(linpred)
    event_time = rng.exponential(1.0 / rates)

    dropout = rng.exponential(25.0, size=n)
    censor_time = np.minimum(dropout, max_follow_up)
    dead = event_time <= censor_time
    observed = np.minimum(event_time, censor_time).round(3)

    status = np.where(dead, DeathStatus.DEAD.value, DeathStatus.ALIVE_CENSORED.value)

    return pd.DataFrame({
        config.deprivation_column: deprivation,
        config.region_column: region,
        config.age_column: age,
        config.status_column: status,
        config.time_column: observed,
    })
