"""Configuration for the breast-cancer survival analysis.

This module groups every tunable setting of a run:
- data: column names, aliases for the original short names, delimiter
- plots: chart styling and histogram bin count
- kaplan_meier: confidence level and interval transform
- cox: covariates and optimizer budget for the Cox model

The master ``AnalysisConfig`` can be serialized to and from JSON so a run
can be reproduced from the ``config.json`` written next to its outputs.
"""
from __future__ import annotations
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import os
import json


class ConfidenceIntervalType(str, Enum):
    """Transform used for the pointwise Kaplan-Meier confidence interval.

    Attributes:
        PLAIN: Symmetric interval on the survival scale
        LOG: Interval on log(S), the default of R's ``survfit``
        LOG_LOG: Interval on log(-log(S)), the default of lifelines
    """
    PLAIN = "plain"
    LOG = "log"
    LOG_LOG = "log-log"


# ============================================================================
# Data Configuration
# ============================================================================

@dataclass
class DataConfig:
    """Column layout of the patient table.

    Attributes:
        deprivation_column: Ordered 5-level deprivation score
        region_column: Region of residence
        age_column: Age at diagnosis in years
        status_column: Two-valued vital status string
        time_column: Survival time since diagnosis
        event_column: Derived boolean event indicator
        id_column: Derived sequential record identifier
        delimiter: Field separator of the input file
        column_aliases: Mapping of alternative header names to canonical names
    """
    deprivation_column: str = "deprivation_score"
    region_column: str = "region"
    age_column: str = "age_at_diagnosis"
    status_column: str = "death_status"
    time_column: str = "survival_time"

    event_column: str = "death_observed"
    """Derived column: True when death was observed, False when censored."""

    id_column: str = "patient_id"
    """Derived column: 1..n in file order, used as record identity in the Cox fit."""

    delimiter: str = ","

    column_aliases: Optional[dict] = None
    """Header names of the original registry extract, renamed on load.

    None maps ``dep``, ``agediag``, ``dead`` and ``survtime`` onto the
    configured column names.
    """

    def __post_init__(self):
        """Fill in the default aliases from the configured column names."""
        if self.column_aliases is None:
            self.column_aliases = {
                "dep": self.deprivation_column,
                "agediag": self.age_column,
                "dead": self.status_column,
                "survtime": self.time_column,
            }

    @property
    def required_columns(self) -> tuple[str, ...]:
        return (
            self.deprivation_column,
            self.region_column,
            self.age_column,
            self.status_column,
            self.time_column,
        )

    @property
    def numeric_columns(self) -> tuple[str, ...]:
        return (self.age_column, self.time_column)


# ============================================================================
# Plot Configuration
# ============================================================================

@dataclass
class PlotConfig:
    """Styling shared by all descriptive charts.

    Attributes:
        dpi: Resolution of written PNG files
        figsize: Default figure size in inches
        histogram_bins: Fixed bin count for stratified histograms
        bar_color: Fill for single-variable bar charts
        box_color: Fill for single boxplots
        mean_marker: Matplotlib marker for the group mean overlay
        mean_color: Colour of the group mean overlay
        mean_marker_size: Size of the group mean overlay
        ci_alpha: Opacity of the Kaplan-Meier confidence band
    """
    dpi: int = 150
    figsize: tuple = (8, 5)
    histogram_bins: int = 10
    bar_color: str = "turquoise"
    box_color: str = "indianred"
    mean_marker: str = "D"
    mean_color: str = "blue"
    mean_marker_size: float = 7.0
    ci_alpha: float = 0.25


# ============================================================================
# Kaplan-Meier Configuration
# ============================================================================

@dataclass
class KaplanMeierConfig:
    """Settings for the Kaplan-Meier estimator.

    Attributes:
        alpha: 1 - confidence level of the pointwise interval
        ci_type: Interval transform ("plain", "log", "log-log")
        time_label: Axis label for the survival curve
    """
    alpha: float = 0.05
    ci_type: ConfidenceIntervalType = ConfidenceIntervalType.LOG
    time_label: str = "Years"

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.ci_type, str):
            self.ci_type = ConfidenceIntervalType(self.ci_type)
        if not 0.0 < self.alpha < 1.0:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")


# ============================================================================
# Cox Model Configuration
# ============================================================================

@dataclass
class CoxConfig:
    """Settings for the Cox proportional-hazards regression.

    Attributes:
        covariates: Columns entering the linear predictor
        max_steps: Newton-Raphson iteration budget
        step_size: Initial Newton-Raphson step size
        penalizer: L2 penalty (0 for the unpenalized partial likelihood)
        alpha: 1 - confidence level of coefficient intervals
        strict_convergence: Raise FitError on non-convergence instead of warning
        check_proportional_hazards: Run the Schoenfeld residual test after fitting
    """
    covariates: tuple[str, ...] = (
        "age_at_diagnosis",
        "deprivation_score",
        "region",
    )

    max_steps: int = 500
    """Maximum Newton-Raphson iterations.

    lifelines' own default is 500; the optimizer stops and reports
    non-convergence once this budget is spent.
    """

    step_size: Optional[float] = None
    """Initial step size; None lets lifelines choose."""

    penalizer: float = 0.0

    alpha: float = 0.05

    strict_convergence: bool = True
    """When False, non-convergence is logged as a warning and the fit is kept."""

    check_proportional_hazards: bool = True

    def __post_init__(self):
        """Validate and normalize configuration."""
        self.covariates = tuple(self.covariates)
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be positive, got {self.max_steps}")
        if self.penalizer < 0:
            raise ValueError(f"penalizer must be non-negative, got {self.penalizer}")

    def fit_options(self) -> dict:
        """Return the ``fit_options`` mapping passed to ``CoxPHFitter.fit``."""
        options = {"max_steps": self.max_steps}
        if self.step_size is not None:
            options["step_size"] = self.step_size
        return options


# ============================================================================
# Master Configuration
# ============================================================================

@dataclass
class AnalysisConfig:
    """Master configuration for a survival analysis run.

    Attributes:
        data: Column layout configuration
        plots: Chart styling configuration
        kaplan_meier: Kaplan-Meier configuration
        cox: Cox regression configuration
        run_type: Type of run ("sample", "production")
        output_dir: Root directory for outputs (defaults to data/outputs/{run_type})
        make_plots: Whether to render descriptive charts and the KM curve
        track_with_mlflow: Whether to log params, metrics and artifacts to MLflow
        description: Optional description of this configuration

    Example:
        >>> config = AnalysisConfig.for_run_type("production")
        >>> config.cox.check_proportional_hazards
        False
        >>> config.save("configs/production.json")
        >>> loaded = AnalysisConfig.load("configs/production.json")
    """
    data: DataConfig = field(default_factory=DataConfig)
    plots: PlotConfig = field(default_factory=PlotConfig)
    kaplan_meier: KaplanMeierConfig = field(default_factory=KaplanMeierConfig)
    cox: CoxConfig = field(default_factory=CoxConfig)

    run_type: str = "sample"
    output_dir: Optional[str] = None
    make_plots: bool = True
    track_with_mlflow: bool = False
    description: str = ""

    @classmethod
    def for_run_type(cls, run_type: str) -> "AnalysisConfig":
        """Create configuration suited to a run type.

        Production runs on the full registry skip the Schoenfeld residual
        test, which is slow on tens of thousands of records.

        Args:
            run_type: One of "sample", "production"

        Returns:
            Configured instance
        """
        if run_type == "production":
            cox = CoxConfig(check_proportional_hazards=False)
        else:
            cox = CoxConfig()
        return cls(cox=cox, run_type=run_type)

    def resolved_output_dir(self) -> str:
        """Return the output root, falling back to data/outputs/{run_type}."""
        return self.output_dir or os.path.join("data", "outputs", self.run_type)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization.

        Returns:
            Dictionary representation of configuration
        """
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
        config_dict = self.to_dict()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

    @classmethod
    def load(cls, path: str) -> "AnalysisConfig":
        """Load configuration from JSON file.

        Missing sections fall back to their defaults.

        Args:
            path: Path to input JSON file

        Returns:
            AnalysisConfig instance
        """
        with open(path) as f:
            data = json.load(f)

        plots = dict(data.get('plots', {}))
        if 'figsize' in plots:
            plots['figsize'] = tuple(plots['figsize'])

        # Reconstruct nested dataclasses
        return cls(
            data=DataConfig(**data.get('data', {})),
            plots=PlotConfig(**plots),
            kaplan_meier=KaplanMeierConfig(**data.get('kaplan_meier', {})),
            cox=CoxConfig(**data.get('cox', {})),
            run_type=data.get('run_type', 'sample'),
            output_dir=data.get('output_dir'),
            make_plots=data.get('make_plots', True),
            track_with_mlflow=data.get('track_with_mlflow', False),
            description=data.get('description', ''),
        )
