"""End-to-end breast-cancer survival analysis.

Stages run once, in order, each taking the previous stage's output and
returning a new object:

1. load        delimited file -> DataFrame
2. recode      categoricals with explicit levels, event indicator, record id
3. describe    per-column summary table
4. plot        descriptive charts
5. km          Kaplan-Meier curve with 95% confidence band
6. fit         Cox proportional-hazards model and coefficient tables
"""
from __future__ import annotations
import os
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union, List, Dict, Type

import numpy as np
import pandas as pd

from cancer_survival.config import AnalysisConfig
from cancer_survival.cox import (
    CoxResult,
    fit_cox,
    coefficient_table,
    format_table,
    proportional_hazards_test,
)
from cancer_survival.data import (
    load_data,
    recode_patient_table,
    add_derived_columns,
    survival_arrays,
    describe_data,
)
from cancer_survival.exceptions import AnalysisError, RecodeError, PlotError, FitError
from cancer_survival.logging_config import get_logger, log_performance, ProgressLogger
from cancer_survival.survival import KaplanMeierResult, fit_kaplan_meier, surv_labels
from cancer_survival.timing import Timer
from cancer_survival.tracking import (
    safe_start_run,
    safe_log_params,
    safe_log_metrics,
    safe_log_artifact,
    sqlite_tracking_uri,
)
from cancer_survival.utils import get_output_paths, save_table, save_text, versioned_name
from cancer_survival.visualization import (
    ChartSpec,
    default_chart_specs,
    render_chart,
    plot_survival_curve,
)


@dataclass
class AnalysisArtifacts:
    """Everything a run produced.

    Attributes:
        output_dir: Root output directory
        data: Recoded patient table with derived columns
        km: Kaplan-Meier result
        cox: Fitted Cox model
        coefficients: Natural-scale (log hazard ratio) coefficient table
        hazard_ratios: Exponentiated coefficient table
        ph_test: Schoenfeld residual test, if run
        figures: Paths of written chart images
        tables: Mapping of table name to written file path
    """
    output_dir: str
    data: pd.DataFrame
    km: KaplanMeierResult
    cox: CoxResult
    coefficients: pd.DataFrame
    hazard_ratios: pd.DataFrame
    ph_test: Optional[pd.DataFrame] = None
    figures: List[str] = field(default_factory=list)
    tables: Dict[str, str] = field(default_factory=dict)


@contextmanager
def _stage(logger: logging.Logger, description: str, error_cls: Type[AnalysisError]):
    """Time a stage and convert unexpected failures into its stage error."""
    with Timer(logger, description):
        try:
            yield
        except AnalysisError:
            raise
        except (ValueError, TypeError, KeyError, OSError) as e:
            raise error_cls(f"{description}: {e}") from e


def render_descriptive_charts(
    df: pd.DataFrame,
    out_dir: str,
    config: AnalysisConfig,
    specs: Optional[List[ChartSpec]] = None,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Render every chart spec to ``out_dir`` and return the written paths."""
    logger = logger or get_logger("pipeline")
    specs = specs if specs is not None else default_chart_specs(config.data)
    progress = ProgressLogger(logger, total=len(specs), desc="Descriptive charts")

    paths = []
    for spec in specs:
        path = render_chart(df, spec, out_dir, config.plots)
        paths.append(str(path))
        progress.update(1, metrics={"chart": spec.filename})
    return paths


def run_analysis(
    input_file: Union[str, Path],
    config: Optional[AnalysisConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> AnalysisArtifacts:
    """Run the complete analysis on one input file.

    Args:
        input_file: Delimited patient table
        config: Run configuration; defaults to ``AnalysisConfig()``
        logger: Logger; defaults to the package's pipeline logger

    Returns:
        AnalysisArtifacts with results and output file paths

    Raises:
        LoadError, RecodeError, PlotError, FitError: The stage that failed

    Example:
        >>> artifacts = run_analysis("data/inputs/bc_data.csv", AnalysisConfig(output_dir="out"))
        >>> artifacts.hazard_ratios[["term", "estimate"]]
    """
    config = config or AnalysisConfig()
    logger = logger or get_logger("pipeline")
    paths = get_output_paths(config.resolved_output_dir())
    config.save(os.path.join(paths["base_dir"], "config.json"))
    tables: Dict[str, str] = {}

    # Loading raises LoadError for every failure it can diagnose
    with Timer(logger, "Load data"):
        raw = load_data(input_file, config.data, run_type=config.run_type)

    with _stage(logger, "Recode variables", RecodeError):
        table = recode_patient_table(raw, config.data)
        table = add_derived_columns(table, config.data)
        durations, events = survival_arrays(table, config.data)

    logger.info(f"First survival times: {' '.join(surv_labels(durations[:10], events[:10]))}")
    log_performance(
        logger, "Patient table ready",
        n_records=len(table), n_deaths=int(events.sum()),
        censored_pct=round(100 * (1 - events.mean()), 1),
    )

    summary = describe_data(table.drop(columns=[config.data.id_column]))
    tables["data_summary"] = save_table(summary, paths["tables"], "data_summary.csv")

    figures: List[str] = []
    if config.make_plots:
        with _stage(logger, "Descriptive charts", PlotError):
            figures.extend(render_descriptive_charts(table, paths["figures"], config, logger=logger))

    with _stage(logger, "Kaplan-Meier estimation", FitError):
        km = fit_kaplan_meier(
            durations, events,
            alpha=config.kaplan_meier.alpha,
            ci_type=config.kaplan_meier.ci_type,
        )
    log_performance(
        logger, "Kaplan-Meier fitted",
        n_records=km.n_records, n_events=km.n_events, median_survival=km.median_survival,
    )
    tables["km_survival"] = save_table(km.to_frame(), paths["tables"], "km_survival.csv")

    if config.make_plots:
        with _stage(logger, "Kaplan-Meier curve", PlotError):
            figures.append(str(plot_survival_curve(
                km,
                Path(paths["figures"]) / "09_km_survival.png",
                show_ci=True,
                xlabel=config.kaplan_meier.time_label,
                config=config.plots,
            )))

    with _stage(logger, "Cox regression", FitError):
        cox = fit_cox(table, config.cox, config.data)
        coefficients = coefficient_table(cox, exponentiate=False)
        hazard_ratios = coefficient_table(cox, exponentiate=True)

    tables["cox_coefficients"] = save_table(coefficients, paths["tables"], "cox_coefficients.csv")
    tables["cox_hazard_ratios"] = save_table(hazard_ratios, paths["tables"], "cox_hazard_ratios.csv")
    coefficients_text = format_table(coefficients, exponentiate=False, alpha=config.cox.alpha)
    hazard_ratios_text = format_table(hazard_ratios, exponentiate=True, alpha=config.cox.alpha)
    tables["cox_coefficients_text"] = save_text(coefficients_text, paths["tables"], "cox_coefficients.txt")
    tables["cox_hazard_ratios_text"] = save_text(hazard_ratios_text, paths["tables"], "cox_hazard_ratios.txt")
    logger.info("Cox coefficients (log hazard ratio):\n" + coefficients_text)
    logger.info("Cox hazard ratios:\n" + hazard_ratios_text)

    ph_test = None
    if config.cox.check_proportional_hazards:
        with Timer(logger, "Proportional hazards test"):
            try:
                ph_test = proportional_hazards_test(cox)
            except (ValueError, np.linalg.LinAlgError) as e:
                logger.warning(f"Proportional hazards test could not be computed: {e}")
        if ph_test is not None:
            tables["ph_test"] = save_table(ph_test, paths["tables"], "ph_test.csv")
            flagged = ph_test.loc[ph_test["p_value"] < 0.05, "term"].tolist()
            if flagged:
                logger.warning(f"Proportional hazards may not hold for: {flagged}")

    artifacts = AnalysisArtifacts(
        output_dir=paths["base_dir"],
        data=table,
        km=km,
        cox=cox,
        coefficients=coefficients,
        hazard_ratios=hazard_ratios,
        ph_test=ph_test,
        figures=figures,
        tables=tables,
    )

    if config.track_with_mlflow:
        _track_run(artifacts, config, paths["mlruns"], logger)

    return artifacts


def _track_run(
    artifacts: AnalysisArtifacts,
    config: AnalysisConfig,
    mlruns_dir: str,
    logger: logging.Logger,
) -> None:
    run_name = versioned_name("breast_cancer_survival", run_type=config.run_type)
    run = safe_start_run(
        run_name,
        tags={"run_type": config.run_type},
        tracking_uri=sqlite_tracking_uri(mlruns_dir),
        artifact_location=(Path(mlruns_dir).resolve() / "artifacts").as_uri(),
        logger=logger,
    )
    if run is None:
        return
    with run:
        safe_log_params(
            {
                "covariates": ",".join(config.cox.covariates),
                "max_steps": config.cox.max_steps,
                "penalizer": config.cox.penalizer,
                "km_ci_type": config.kaplan_meier.ci_type.value,
                "alpha": config.cox.alpha,
            },
            logger=logger,
        )
        metrics = dict(artifacts.cox.metrics())
        if np.isfinite(artifacts.km.median_survival):
            metrics["km_median_survival"] = artifacts.km.median_survival
        safe_log_metrics(metrics, logger=logger)
        for path in artifacts.tables.values():
            safe_log_artifact(path, logger=logger, artifact_path="tables")
        for path in artifacts.figures:
            safe_log_artifact(path, logger=logger, artifact_path="figures")
    logger.info(f"Run tracked in MLflow: {run_name}")
