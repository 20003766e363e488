"""Kaplan-Meier estimation with Greenwood confidence intervals.

The product-limit estimate comes from lifelines' ``KaplanMeierFitter``; the
Greenwood variance and the pointwise interval are computed from its event
table so the interval transform can match R's ``survfit`` ("log") as well as
lifelines' own "log-log" interval.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Union
import numpy as np
import pandas as pd
from scipy.stats import norm
from lifelines import KaplanMeierFitter

from cancer_survival.config import ConfidenceIntervalType

ArrayLike = Union[np.ndarray, pd.Series, list]


@dataclass
class KaplanMeierResult:
    """Kaplan-Meier step function with Greenwood variance.

    All arrays are aligned with ``timeline`` and describe the right-continuous
    step function: ``survival[i]`` holds on ``[timeline[i], timeline[i + 1])``.

    Attributes:
        timeline: Observed times, starting with the origin (0, S = 1). Deaths
            at time 0 repeat 0 in the next entry with the dropped value
        survival: Estimated S(t)
        variance: Greenwood variance of S(t)
        ci_lower: Lower pointwise confidence bound
        ci_upper: Upper pointwise confidence bound
        event_table: At-risk, observed and censored counts per time
        median_survival: First time S(t) <= 0.5, inf if never reached
        alpha: 1 - confidence level
        ci_type: Interval transform used
    """
    timeline: np.ndarray
    survival: np.ndarray
    variance: np.ndarray
    ci_lower: np.ndarray
    ci_upper: np.ndarray
    event_table: pd.DataFrame
    median_survival: float
    alpha: float
    ci_type: ConfidenceIntervalType

    @property
    def n_records(self) -> int:
        return int(self.event_table["at_risk"].iloc[0])

    @property
    def n_events(self) -> int:
        return int(self.event_table["observed"].sum())

    def to_frame(self) -> pd.DataFrame:
        """Return the curve and its interval as one table (one row per time)."""
        return pd.DataFrame({
            "time": self.timeline,
            "at_risk": self.event_table["at_risk"].to_numpy(),
            "observed": self.event_table["observed"].to_numpy(),
            "censored": self.event_table["censored"].to_numpy(),
            "survival": self.survival,
            "variance": self.variance,
            "std_error": np.sqrt(self.variance),
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
        })


def _validate_inputs(durations: ArrayLike, events: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    durations = np.asarray(durations, dtype=float)
    events = np.asarray(events)

    if durations.ndim != 1 or events.ndim != 1:
        raise ValueError("durations and events must be one-dimensional")
    if len(durations) != len(events):
        raise ValueError(
            f"durations and events differ in length: {len(durations)} != {len(events)}"
        )
    if len(durations) == 0:
        raise ValueError("Need at least one observation")
    if not np.isfinite(durations).all():
        raise ValueError("Non-finite values detected in durations")
    if (durations < 0).any():
        raise ValueError("durations must be non-negative")
    if not np.isin(events, (0, 1)).all():
        raise ValueError("events must be 0 (censored) or 1 (event)")

    return durations, events.astype(int)


def greenwood_variance(
    survival: np.ndarray, at_risk: np.ndarray, observed: np.ndarray
) -> np.ndarray:
    """Greenwood's variance of the product-limit estimate.

    Var[S(t)] = S(t)^2 * sum_{t_i <= t} d_i / (n_i (n_i - d_i))

    Terms with d_i == n_i (the curve reaching zero) are dropped; the variance
    there is zero because S(t) is zero.
    """
    at_risk = np.asarray(at_risk, dtype=float)
    observed = np.asarray(observed, dtype=float)
    safe = at_risk > observed
    terms = np.zeros_like(at_risk)
    terms[safe] = observed[safe] / (at_risk[safe] * (at_risk[safe] - observed[safe]))
    return np.asarray(survival, dtype=float) ** 2 * np.cumsum(terms)


def confidence_interval(
    survival: np.ndarray,
    variance: np.ndarray,
    alpha: float = 0.05,
    ci_type: Union[str, ConfidenceIntervalType] = ConfidenceIntervalType.LOG,
) -> tuple[np.ndarray, np.ndarray]:
    """Pointwise confidence bounds for S(t).

    Args:
        survival: Estimated S(t)
        variance: Greenwood variance of S(t)
        alpha: 1 - confidence level
        ci_type: "plain", "log" or "log-log"

    Returns:
        (lower, upper) clipped to [0, 1]. Where S(t) is 0 or 1 the bounds
        collapse onto S(t).
    """
    ci_type = ConfidenceIntervalType(ci_type)
    z = norm.ppf(1.0 - alpha / 2.0)
    s = np.asarray(survival, dtype=float)
    var = np.asarray(variance, dtype=float)

    lower = s.copy()
    upper = s.copy()
    inner = (s > 0) & (s < 1)

    if ci_type is ConfidenceIntervalType.PLAIN:
        se = np.sqrt(var[inner])
        lower[inner] = s[inner] - z * se
        upper[inner] = s[inner] + z * se
    elif ci_type is ConfidenceIntervalType.LOG:
        se_log = np.sqrt(var[inner]) / s[inner]
        lower[inner] = s[inner] * np.exp(-z * se_log)
        upper[inner] = s[inner] * np.exp(z * se_log)
    else:
        log_s = np.log(s[inner])
        se_loglog = np.sqrt(var[inner]) / (s[inner] * np.abs(log_s))
        centre = np.log(-log_s)
        lower[inner] = np.exp(-np.exp(centre + z * se_loglog))
        upper[inner] = np.exp(-np.exp(centre - z * se_loglog))

    return np.clip(lower, 0.0, 1.0), np.clip(upper, 0.0, 1.0)


def fit_kaplan_meier(
    durations: ArrayLike,
    events: ArrayLike,
    alpha: float = 0.05,
    ci_type: Union[str, ConfidenceIntervalType] = ConfidenceIntervalType.LOG,
) -> KaplanMeierResult:
    """Fit the Kaplan-Meier estimator to right-censored data.

    Tied deaths at the same time are handled jointly in a single risk-set
    update; censored records leave the risk set at their time without
    contributing a death. With no events at all the curve stays at 1.

    Args:
        durations: Observed times (non-negative)
        events: 1 if death was observed, 0 if censored
        alpha: 1 - confidence level of the pointwise interval
        ci_type: Interval transform ("plain", "log", "log-log")

    Returns:
        KaplanMeierResult

    Raises:
        ValueError: If inputs are empty, of different lengths, contain negative
            or non-finite durations, or events outside {0, 1}

    Example:
        >>> km = fit_kaplan_meier([2, 3, 3, 5], [1, 1, 0, 1])
        >>> km.survival
        array([1.  , 0.75, 0.5 , 0.  ])
    """
    durations, events = _validate_inputs(durations, events)

    kmf = KaplanMeierFitter(alpha=alpha)
    kmf.fit(durations, event_observed=events, label="km_estimate")

    table = kmf.event_table[["at_risk", "observed", "censored"]].copy()
    survival = kmf.survival_function_at_times(table.index).to_numpy(dtype=float)
    timeline = table.index.to_numpy(dtype=float)

    # The curve starts at S = 1; deaths at t = 0 drop it in the following row
    if timeline[0] > 0 or table["observed"].iloc[0] > 0:
        start = pd.DataFrame(
            {"at_risk": [len(durations)], "observed": [0], "censored": [0]},
            index=pd.Index([0.0], name=table.index.name),
        )
        table = pd.concat([start, table])
        survival = np.concatenate([[1.0], survival])
        timeline = np.concatenate([[0.0], timeline])

    variance = greenwood_variance(survival, table["at_risk"], table["observed"])
    ci_lower, ci_upper = confidence_interval(survival, variance, alpha, ci_type)

    return KaplanMeierResult(
        timeline=timeline,
        survival=survival,
        variance=variance,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        event_table=table,
        median_survival=float(kmf.median_survival_time_),
        alpha=alpha,
        ci_type=ConfidenceIntervalType(ci_type),
    )


def survival_at(result: KaplanMeierResult, times: Union[float, ArrayLike]) -> np.ndarray:
    """Evaluate the step function at arbitrary times.

    S(t) is 1 before the first time point and stays at the last computed
    step beyond the last observed time. Where a time repeats (deaths at 0)
    the value after the drop applies.
    """
    times = np.atleast_1d(np.asarray(times, dtype=float))
    idx = np.searchsorted(result.timeline, times, side="right") - 1
    values = np.ones_like(times)
    inside = idx >= 0
    values[inside] = result.survival[idx[inside]]
    return values


def surv_labels(durations: ArrayLike, events: ArrayLike) -> list[str]:
    """Render records as survival-time labels, censored times suffixed with "+".

    Example:
        >>> surv_labels([6.5, 3.0], [0, 1])
        ['6.5+', '3']
    """
    durations, events = _validate_inputs(durations, events)
    return [f"{t:g}" if e else f"{t:g}+" for t, e in zip(durations, events)]
