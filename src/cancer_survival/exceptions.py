"""Stage-tagged errors raised by the analysis pipeline.

Every error carries the name of the stage that failed so the entry point can
report which part of the run aborted.
"""


class AnalysisError(Exception):
    """Base class for fatal analysis errors.

    Attributes:
        stage: Pipeline stage that raised the error
    """

    stage: str = "analysis"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.stage} stage failed: {self.message}"


class LoadError(AnalysisError):
    """Input file missing, unreadable or malformed."""

    stage = "load"


class RecodeError(AnalysisError):
    """Category value outside the declared level set."""

    stage = "recode"


class PlotError(AnalysisError):
    """Invalid chart specification."""

    stage = "plot"


class FitError(AnalysisError):
    """Regression failed to converge or design matrix is rank-deficient."""

    stage = "fit"
