from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Sequence
import numpy as np
import pandas as pd
from scipy.stats import norm
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError
from lifelines.statistics import proportional_hazard_test

from cancer_survival.config import CoxConfig, DataConfig
from cancer_survival.exceptions import FitError
from cancer_survival.logging_config import get_logger, capture_warnings, log_performance

logger = get_logger("cox")

TABLE_COLUMNS = [
    "variable",
    "level",
    "term",
    "estimate",
    "std_error",
    "conf_low",
    "conf_high",
    "statistic",
    "p_value",
]


@dataclass
class DesignMatrix:
    """Numeric covariate matrix for the Cox model.

    Attributes:
        X: One column per term, indexed by the record identifier
        terms: Mapping of each column to its source ``variable`` and ``level``
            (level is None for numeric covariates)
        dropped: Number of records excluded for missing values
    """
    X: pd.DataFrame
    terms: pd.DataFrame
    dropped: int = 0


def _term_name(variable: str, level) -> str:
    return f"{variable}[{level}]"


def build_design_matrix(
    df: pd.DataFrame,
    covariates: Sequence[str],
    id_column: str,
    outcome_columns: Sequence[str] = (),
) -> DesignMatrix:
    """Expand covariates into a full-rank numeric design matrix.

    Categorical covariates use reference-level dummy coding: the first
    declared level is the reference and every other level gets a 0/1 column.
    Numeric and boolean covariates pass through as floats. Records with a
    missing covariate or outcome are dropped, as R's ``coxph`` does.

    Args:
        df: Recoded patient table
        covariates: Columns entering the linear predictor
        id_column: Unique per-record identifier used as the row index
        outcome_columns: Columns that must also be non-missing (time, event)

    Returns:
        DesignMatrix

    Raises:
        FitError: If the id column is missing or not unique, a covariate is
            missing or still a plain string column, a dummy level has no
            observations, a column is constant, or the matrix is rank-deficient

    Example:
        >>> design = build_design_matrix(df, ["age_at_diagnosis", "deprivation_score"], "patient_id")
        >>> list(design.X.columns)
        ['age_at_diagnosis', 'deprivation_score[2]', 'deprivation_score[3]',
         'deprivation_score[4]', 'deprivation_score[mostdep]']
    """
    if not covariates:
        raise FitError("At least one covariate is required")
    if id_column not in df.columns:
        raise FitError(f"Record identifier column '{id_column}' not found")
    if not df[id_column].is_unique:
        n_dup = int(df[id_column].duplicated().sum())
        raise FitError(f"Record identifier '{id_column}' is not unique ({n_dup} duplicates)")

    missing = [col for col in covariates if col not in df.columns]
    if missing:
        raise FitError(f"Covariates not found in data: {missing}")

    needed = list(covariates) + [c for c in outcome_columns if c not in covariates]
    complete = df[needed].notna().all(axis=1)
    dropped = int((~complete).sum())
    if dropped:
        logger.warning(f"Dropping {dropped:,} records with missing covariate or outcome values")
    data = df.loc[complete]
    if data.empty:
        raise FitError("No complete records remain for the Cox model")

    columns = {}
    term_rows = []
    for variable in covariates:
        series = data[variable]
        if isinstance(series.dtype, pd.CategoricalDtype):
            levels = list(series.cat.categories)
            if len(levels) < 2:
                raise FitError(f"Categorical covariate '{variable}' needs at least 2 levels")
            for level in levels[1:]:
                dummy = (series == level).to_numpy(dtype=float)
                if dummy.sum() == 0:
                    raise FitError(
                        f"Level '{level}' of '{variable}' has zero observations; "
                        f"design matrix is rank-deficient"
                    )
                name = _term_name(variable, level)
                columns[name] = dummy
                term_rows.append((name, variable, str(level)))
        elif pd.api.types.is_bool_dtype(series) or pd.api.types.is_numeric_dtype(series):
            columns[variable] = series.to_numpy(dtype=float)
            term_rows.append((variable, variable, None))
        else:
            raise FitError(
                f"Covariate '{variable}' has dtype {series.dtype}; recode it to a "
                f"categorical or numeric column first"
            )

    X = pd.DataFrame(columns, index=pd.Index(data[id_column].to_numpy(), name=id_column))

    constant = [col for col in X.columns if X[col].nunique() < 2]
    if constant:
        raise FitError(f"Constant design columns: {constant}")

    rank = np.linalg.matrix_rank(X.to_numpy())
    if rank < X.shape[1]:
        raise FitError(
            f"Design matrix is rank-deficient (rank {rank} < {X.shape[1]} columns)"
        )

    terms = pd.DataFrame(term_rows, columns=["term", "variable", "level"])
    return DesignMatrix(X=X, terms=terms, dropped=dropped)


@dataclass
class CoxResult:
    """Fitted Cox proportional-hazards model.

    Attributes:
        fitter: Fitted lifelines ``CoxPHFitter``
        terms: Term to variable/level mapping from the design matrix
        data: Design matrix with duration and event columns, as fitted
        duration_column: Name of the duration column in ``data``
        event_column: Name of the event column in ``data``
        converged: False when the optimizer used its whole iteration budget
        alpha: 1 - confidence level of coefficient intervals
        warnings: Warning messages emitted during fitting
    """
    fitter: CoxPHFitter
    terms: pd.DataFrame
    data: pd.DataFrame
    duration_column: str
    event_column: str
    converged: bool = True
    alpha: float = 0.05
    warnings: list = field(default_factory=list)

    @property
    def n_records(self) -> int:
        return int(len(self.data))

    @property
    def n_events(self) -> int:
        return int(self.data[self.event_column].sum())

    @property
    def concordance(self) -> float:
        return float(self.fitter.concordance_index_)

    @property
    def log_likelihood(self) -> float:
        return float(self.fitter.log_likelihood_)

    @property
    def aic(self) -> float:
        return float(self.fitter.AIC_partial_)

    def metrics(self) -> dict:
        """Summary statistics for logging and tracking."""
        return {
            "n_records": self.n_records,
            "n_events": self.n_events,
            "concordance": round(self.concordance, 4),
            "log_likelihood": round(self.log_likelihood, 3),
            "aic_partial": round(self.aic, 3),
        }


def _is_non_convergence(message: str) -> bool:
    return "failed to converge" in message.lower()


def fit_cox(
    df: pd.DataFrame,
    config: Optional[CoxConfig] = None,
    data_config: Optional[DataConfig] = None,
) -> CoxResult:
    """Fit a Cox proportional-hazards model by partial likelihood.

    Ties are handled with Efron's method (lifelines' only tie method). The
    Newton-Raphson iteration budget is ``config.max_steps``.

    Args:
        df: Recoded patient table with derived ``death_observed`` and ``patient_id``
        config: Covariates and optimizer settings; defaults to ``CoxConfig()``
        data_config: Column layout; defaults to ``DataConfig()``

    Returns:
        CoxResult

    Raises:
        FitError: On a rank-deficient design, a numerical failure in the
            optimizer, or non-convergence when ``config.strict_convergence``

    Notes:
        A covariate that perfectly separates deaths from survivors has no
        finite maximum-likelihood estimate; the fit either fails to converge
        or returns a coefficient of very large magnitude.
    """
    config = config or CoxConfig()
    data_config = data_config or DataConfig()
    time_col = data_config.time_column
    event_col = data_config.event_column

    for col in (time_col, event_col):
        if col not in df.columns:
            raise FitError(f"Outcome column '{col}' not found")

    design = build_design_matrix(
        df, config.covariates, data_config.id_column, outcome_columns=(time_col, event_col)
    )
    frame = design.X.copy()
    outcome = df.set_index(data_config.id_column).loc[frame.index]
    frame[time_col] = outcome[time_col].to_numpy(dtype=float)
    frame[event_col] = outcome[event_col].to_numpy(dtype=bool).astype(int)

    if frame[event_col].sum() == 0:
        raise FitError("No events observed; the partial likelihood is flat")

    logger.info(
        f"Fitting Cox model on {len(frame):,} records, {frame[event_col].sum():,} events, "
        f"{design.X.shape[1]} terms (max_steps={config.max_steps})"
    )

    cph = CoxPHFitter(penalizer=config.penalizer, alpha=config.alpha)
    with capture_warnings(logger) as caught:
        try:
            cph.fit(
                frame,
                duration_col=time_col,
                event_col=event_col,
                fit_options=config.fit_options(),
            )
        except ConvergenceError as e:
            raise FitError(f"Cox model optimization failed: {e}") from e
        except np.linalg.LinAlgError as e:
            raise FitError(f"Cox model Hessian is singular: {e}") from e

    messages = [message for _, message in caught.messages]
    converged = not any(_is_non_convergence(m) for m in messages)
    if not converged:
        if config.strict_convergence:
            raise FitError(
                f"Cox model did not converge within {config.max_steps} Newton-Raphson steps"
            )
        logger.warning(
            f"Cox model did not converge within {config.max_steps} steps; "
            f"estimates may be unreliable"
        )

    if not np.isfinite(cph.params_.to_numpy()).all():
        raise FitError("Cox model produced non-finite coefficients")

    result = CoxResult(
        fitter=cph,
        terms=design.terms,
        data=frame,
        duration_column=time_col,
        event_column=event_col,
        converged=converged,
        alpha=config.alpha,
        warnings=messages,
    )
    log_performance(logger, "Cox model fitted", **result.metrics())
    return result


def coefficient_table(
    result: CoxResult,
    exponentiate: bool = False,
    alpha: Optional[float] = None,
) -> pd.DataFrame:
    """Tidy coefficient table, one row per covariate or dummy level.

    Args:
        result: Fitted Cox model
        exponentiate: Report hazard ratios exp(beta) and exponentiated bounds
        alpha: 1 - confidence level; defaults to the level used in fitting

    Returns:
        DataFrame with columns ``variable``, ``level``, ``term``, ``estimate``,
        ``std_error``, ``conf_low``, ``conf_high``, ``statistic`` (Wald z) and
        ``p_value``. Standard error, z and p stay on the log-hazard scale.
    """
    alpha = result.alpha if alpha is None else alpha
    z_crit = norm.ppf(1.0 - alpha / 2.0)

    summary = result.fitter.summary
    terms = result.terms.set_index("term")
    coef = result.fitter.params_
    se = result.fitter.standard_errors_

    table = pd.DataFrame({
        "variable": terms.loc[coef.index, "variable"].to_numpy(),
        "level": terms.loc[coef.index, "level"].to_numpy(),
        "term": coef.index.to_numpy(),
        "estimate": coef.to_numpy(),
        "std_error": se.loc[coef.index].to_numpy(),
        "conf_low": (coef - z_crit * se.loc[coef.index]).to_numpy(),
        "conf_high": (coef + z_crit * se.loc[coef.index]).to_numpy(),
        "statistic": summary.loc[coef.index, "z"].to_numpy(),
        "p_value": summary.loc[coef.index, "p"].to_numpy(),
    })

    if exponentiate:
        for col in ("estimate", "conf_low", "conf_high"):
            table[col] = np.exp(table[col])

    return table[TABLE_COLUMNS]


def _format_p(p: float) -> str:
    if p < 0.001:
        return "<0.001"
    return f"{p:.3f}"


def format_table(table: pd.DataFrame, exponentiate: bool = False, alpha: float = 0.05) -> str:
    """Render a coefficient table as aligned text.

    Estimates and bounds are shown to two decimals, the interval as
    "low, high", p-values below 0.001 as "<0.001".
    """
    estimate_label = "HR" if exponentiate else "log(HR)"
    ci_label = f"{round(100 * (1 - alpha))}% CI"

    characteristic = [
        variable if level is None or pd.isna(level) else f"{variable}: {level}"
        for variable, level in zip(table["variable"], table["level"])
    ]
    display = pd.DataFrame({
        "Characteristic": characteristic,
        estimate_label: table["estimate"].map(lambda v: f"{v:.2f}"),
        "SE": table["std_error"].map(lambda v: f"{v:.3f}"),
        ci_label: [f"{lo:.2f}, {hi:.2f}" for lo, hi in zip(table["conf_low"], table["conf_high"])],
        "p-value": table["p_value"].map(_format_p),
    })
    return display.to_string(index=False)


def proportional_hazards_test(result: CoxResult) -> pd.DataFrame:
    """Check the proportional hazards assumption using Schoenfeld residuals.

    Low p-values flag terms whose effect may vary over time.

    Returns:
        DataFrame with columns ``term``, ``test_statistic``, ``p_value``,
        sorted by p-value (most problematic first)
    """
    results = proportional_hazard_test(result.fitter, result.data, time_transform="rank")
    out = (
        results.summary[["test_statistic", "p"]]
        .rename(columns={"p": "p_value"})
        .sort_values("p_value")
    )
    out.index.name = "term"
    return out.reset_index()
