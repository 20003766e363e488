from __future__ import annotations
from enum import Enum
from typing import Mapping, Sequence, Iterable, Tuple, Union, Optional, Literal, Type
from pathlib import Path
import numpy as np
import pandas as pd

from cancer_survival.config import DataConfig
from cancer_survival.exceptions import LoadError, RecodeError
from cancer_survival.logging_config import get_logger

# Run type for distinguishing sample vs production runs
RunType = Literal["sample", "production"]

logger = get_logger("data")

# Missing markers for numeric columns; category columns only treat empty fields as missing
NUMERIC_NA_VALUES = ["", "NA", "N/A", "NaN", "nan", "NULL", "null"]


class DeprivationScore(str, Enum):
    """Area deprivation quintile, least to most deprived."""
    LEAST = "leastdep"
    SECOND = "2"
    THIRD = "3"
    FOURTH = "4"
    MOST = "mostdep"


class DeathStatus(str, Enum):
    """Vital status at end of follow-up. ALIVE_CENSORED is the reference level."""
    ALIVE_CENSORED = "alive/ce"
    DEAD = "dead"


LevelSpec = Union[Sequence[str], Type[Enum], None]


def levels_of(enum_cls: Type[Enum]) -> list[str]:
    """Return the level ordering array of a categorical enum.

    Example:
        >>> levels_of(DeathStatus)
        ['alive/ce', 'dead']
    """
    return [member.value for member in enum_cls]


def load_data(
    file_path: Union[str, Path],
    config: Optional[DataConfig] = None,
    run_type: RunType = "sample"
) -> pd.DataFrame:
    """Load the patient table from a delimited text file.

    Header names of the original registry extract (``dep``, ``agediag``,
    ``dead``, ``survtime``) are renamed to the canonical column names.

    Args:
        file_path: Path to the delimited file (header row required)
        config: Column layout; defaults to ``DataConfig()``
        run_type: Type of run, used only for logging

    Returns:
        DataFrame with the required columns, numeric columns as float

    Raises:
        LoadError: If the file does not exist, is empty or unparseable, lacks
            a required column, has non-numeric values in a numeric column or
            a negative survival time

    Example:
        >>> df = load_data("data/inputs/bc_data.csv")
        >>> df.shape
        (69199, 5)
    """
    config = config or DataConfig()
    file_path = Path(file_path)

    if not file_path.exists():
        raise LoadError(f"Data file not found: {file_path}")
    if not file_path.is_file():
        raise LoadError(f"Data path is not a file: {file_path}")

    logger.info(f"Loading data from {file_path} (run_type={run_type})")
    try:
        df = pd.read_csv(
            file_path,
            sep=config.delimiter,
            keep_default_na=False,
            na_values=_na_values(config),
        )
    except pd.errors.EmptyDataError as e:
        raise LoadError(f"Data file is empty: {file_path}") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise LoadError(f"Could not parse {file_path}: {e}") from e

    df = df.rename(columns=lambda c: str(c).strip())
    df = df.rename(columns=config.column_aliases)

    missing = [col for col in config.required_columns if col not in df.columns]
    if missing:
        raise LoadError(
            f"Missing required columns {missing} in {file_path}. "
            f"Found: {list(df.columns)}"
        )
    if df.empty:
        raise LoadError(f"Data file has a header but no records: {file_path}")

    for col in config.numeric_columns:
        coerced = pd.to_numeric(df[col], errors="coerce")
        bad = coerced.isna() & df[col].notna()
        if bad.any():
            examples = df.loc[bad, col].astype(str).unique()[:5].tolist()
            raise LoadError(f"Non-numeric values in column '{col}': {examples}")
        df[col] = coerced.astype(float)

    negative = (df[config.time_column] < 0).sum()
    if negative:
        raise LoadError(
            f"{negative:,} records have {config.time_column} < 0; "
            f"survival times must be non-negative"
        )

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns")
    return df


def _na_values(config: DataConfig) -> dict[str, list[str]]:
    """Per-column missing-value markers, keyed by canonical and alias header names."""
    headers = {col: [col] for col in config.required_columns}
    for alias, target in config.column_aliases.items():
        if target in headers:
            headers[target].append(alias)

    na_values = {}
    for col, names in headers.items():
        markers = NUMERIC_NA_VALUES if col in config.numeric_columns else [""]
        for name in names:
            na_values[name] = markers
    return na_values


def default_levels(config: Optional[DataConfig] = None) -> dict[str, LevelSpec]:
    """Return the recoding specification used by the pipeline.

    Deprivation and death status use their enum orderings; region levels are
    the sorted distinct values present in the data.
    """
    config = config or DataConfig()
    return {
        config.deprivation_column: DeprivationScore,
        config.region_column: None,
        config.status_column: DeathStatus,
    }


def _label(value) -> str:
    # Integral floats come from numeric-looking level columns ("2" read as 2.0)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _resolve_levels(spec: LevelSpec, series: pd.Series) -> list[str]:
    if spec is None:
        if isinstance(series.dtype, pd.CategoricalDtype):
            return [_label(c) for c in series.cat.categories]
        return sorted({_label(v) for v in series.dropna()})
    if isinstance(spec, type) and issubclass(spec, Enum):
        return levels_of(spec)
    return [_label(v) for v in spec]


def recode(
    df: pd.DataFrame,
    levels: Mapping[str, LevelSpec],
    ordered: Iterable[str] = (),
) -> pd.DataFrame:
    """Convert columns to categoricals with an explicit level order.

    Levels keep the declared order rather than alphabetical order, so the
    first level is the reference category in the Cox model. Recoding an
    already-recoded column with the same levels returns an equal column.

    Args:
        df: Input table (not modified)
        levels: Mapping of column -> ordered level sequence, an Enum class
            whose declaration order gives the levels, or None for the sorted
            distinct values present
        ordered: Columns whose categorical should be ordered

    Returns:
        New DataFrame with the same rows in the same order

    Raises:
        RecodeError: If a column is missing, the level list has duplicates or a
            non-missing value is outside the declared levels

    Example:
        >>> out = recode(df, {"deprivation_score": DeprivationScore}, ordered=["deprivation_score"])
        >>> list(out["deprivation_score"].cat.categories)
        ['leastdep', '2', '3', '4', 'mostdep']
    """
    ordered = set(ordered)
    out = df.copy()

    for col, spec in levels.items():
        if col not in out.columns:
            raise RecodeError(f"Column '{col}' not found; available: {list(out.columns)}")

        series = out[col]
        categories = _resolve_levels(spec, series)
        if len(set(categories)) != len(categories):
            raise RecodeError(f"Duplicate levels declared for '{col}': {categories}")

        raw = series.astype("object")
        present = raw.notna()
        labels = raw.copy()
        labels[present] = raw[present].map(_label)

        unknown = sorted(set(labels[present]) - set(categories))
        if unknown:
            raise RecodeError(
                f"Column '{col}' has values outside the declared levels "
                f"{categories}: {unknown[:10]}"
            )

        out[col] = pd.Categorical(labels, categories=categories, ordered=col in ordered)
        logger.debug(f"Recoded '{col}' with levels {categories}")

    return out


def recode_patient_table(df: pd.DataFrame, config: Optional[DataConfig] = None) -> pd.DataFrame:
    """Recode deprivation, region and death status with the default levels."""
    config = config or DataConfig()
    return recode(df, default_levels(config), ordered=[config.deprivation_column])


def add_derived_columns(df: pd.DataFrame, config: Optional[DataConfig] = None) -> pd.DataFrame:
    """Append the canonical event indicator and a sequential record id.

    ``death_observed`` is the single event representation; numeric 0/1 views
    for the estimators come from :func:`survival_arrays`.

    Args:
        df: Recoded patient table (not modified)
        config: Column layout; defaults to ``DataConfig()``

    Returns:
        Copy of ``df`` with ``death_observed`` (bool) and ``patient_id`` (1..n)

    Raises:
        RecodeError: If the status column is not recoded or has missing values
    """
    config = config or DataConfig()
    status = df[config.status_column]

    if not isinstance(status.dtype, pd.CategoricalDtype):
        raise RecodeError(
            f"'{config.status_column}' must be recoded to a categorical before "
            f"deriving the event indicator"
        )
    if DeathStatus.DEAD.value not in status.cat.categories:
        raise RecodeError(
            f"'{config.status_column}' has no '{DeathStatus.DEAD.value}' level: "
            f"{list(status.cat.categories)}"
        )
    n_missing = int(status.isna().sum())
    if n_missing:
        raise RecodeError(f"{n_missing:,} records have a missing '{config.status_column}'")

    out = df.copy()
    out[config.event_column] = (status == DeathStatus.DEAD.value).to_numpy(dtype=bool)
    out[config.id_column] = np.arange(1, len(out) + 1, dtype=int)
    return out


def survival_arrays(
    df: pd.DataFrame, config: Optional[DataConfig] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Extract (durations, events) with events as 0 = censored, 1 = death.

    Raises:
        RecodeError: If the derived event column is absent
    """
    config = config or DataConfig()
    if config.event_column not in df.columns:
        raise RecodeError(
            f"Event column '{config.event_column}' not found; derive it with add_derived_columns()"
        )
    durations = df[config.time_column].to_numpy(dtype=float)
    events = df[config.event_column].to_numpy(dtype=bool).astype(int)
    return durations, events


def describe_data(df: pd.DataFrame) -> pd.DataFrame:
    """Summarize every column in long format.

    Categorical and boolean columns report a count per level; numeric columns
    report min, quartiles, mean and max. Every column reports its missing count.

    Returns:
        DataFrame with columns ``variable``, ``statistic``, ``value``
    """
    rows = []
    for col in df.columns:
        series = df[col]
        if isinstance(series.dtype, pd.CategoricalDtype) or series.dtype == bool:
            counts = series.value_counts(sort=False, dropna=True)
            for level, count in counts.items():
                rows.append((col, str(level), float(count)))
        elif pd.api.types.is_numeric_dtype(series):
            stats = series.describe()
            for name, key in (("min", "min"), ("q1", "25%"), ("median", "50%"),
                              ("mean", "mean"), ("q3", "75%"), ("max", "max")):
                rows.append((col, name, float(stats[key])))
        else:
            rows.append((col, "n_unique", float(series.nunique())))
        rows.append((col, "missing", float(series.isna().sum())))

    return pd.DataFrame(rows, columns=["variable", "statistic", "value"])
