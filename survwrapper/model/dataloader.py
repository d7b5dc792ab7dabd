"""
Configuration loading, CSV ingestion and column derivation for survival data.
"""

import os
import logging
from typing import Dict, List, Optional, Tuple, Union, Any

import numpy as np
import pandas as pd
import requests
import yaml
from sklearn.model_selection import train_test_split

logger = logging.getLogger(__name__)


def load_configuration(config_path: str) -> Dict:
    """
    Load a YAML configuration file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        dict: Parsed configuration.
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping, got {type(config).__name__}")

    logger.info(f"Configuration loaded from {config_path}")
    return config


def load_configuration_from_url(url: str) -> Dict:
    """
    Download and parse a YAML configuration.

    Args:
        url: URL to the YAML configuration file

    Returns:
        Dict containing the configuration
    """
    try:
        logger.info(f"Downloading configuration from: {url}")
        response = requests.get(url, timeout=30)
        response.raise_for_status()

        config = yaml.safe_load(response.text)
        logger.info("Configuration downloaded and parsed successfully")
        return config

    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to download configuration from URL: {e}")
        raise RuntimeError(f"Failed to download configuration from URL: {e}")
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML from URL: {e}")
        raise RuntimeError(f"Failed to parse YAML from URL: {e}")


def resolve_configuration(config: Union[str, Dict]) -> Tuple[Dict, str]:
    """
    Turn a path, URL or dictionary into a configuration dictionary.

    Args:
        config: Either:
            - Path to a local YAML config file (str)
            - URL to a YAML config file (str starting with http:// or https://)
            - Config dictionary (dict)

    Returns:
        (config dict, human readable description of where it came from)
    """
    if isinstance(config, str):
        if config.startswith(('http://', 'https://')):
            return load_configuration_from_url(config), f"URL: {config}"
        if not os.path.exists(config):
            raise FileNotFoundError(f"Configuration file not found: {config}")
        return load_configuration(config), f"file: {config}"
    if isinstance(config, dict):
        return config.copy(), "dictionary"
    raise TypeError("config must be a file path (str), URL (str), or dictionary")


def load_csv_data(path: str, **read_csv_kwargs) -> pd.DataFrame:
    """Read a CSV file into a DataFrame."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Data file not found: {path}")

    df = pd.read_csv(path, **read_csv_kwargs)
    logger.info(f"Loaded {path}: {df.shape[0]} rows, {df.shape[1]} columns")
    return df


# --- Column derivation ---

def _normalise_key(value: Any) -> str:
    # YAML keys may arrive as int while CSV values arrive as float (1.0)
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def recode_column(df: pd.DataFrame, source: str, target: str, mapping: Dict) -> pd.DataFrame:
    """
    Map the values of ``source`` to labels stored in ``target``.

    Values missing from ``mapping`` become NaN.
    """
    if source not in df.columns:
        raise KeyError(f"Column '{source}' not found for recoding")

    lookup = {_normalise_key(k): v for k, v in mapping.items()}
    df = df.copy()
    df[target] = df[source].map(lambda v: lookup.get(_normalise_key(v)) if pd.notna(v) else np.nan)

    unmapped = df[source].notna() & df[target].isna()
    if unmapped.any():
        logger.warning(f"{int(unmapped.sum())} values of '{source}' have no mapping and were set to NaN")
    return df


def assign_alternating(df: pd.DataFrame, target: str, values: List) -> pd.DataFrame:
    """Fill ``target`` by repeating ``values`` down the rows."""
    if not values:
        raise ValueError("values must contain at least one element")

    df = df.copy()
    df[target] = np.resize(np.asarray(values, dtype=object), len(df))
    return df


def derive_event(df: pd.DataFrame, status_col: str, event_value: Any = 1,
                 event_col: str = 'event') -> pd.DataFrame:
    """
    Binary event indicator: 1 when ``status_col == event_value``, else 0.

    Rows with a missing status get a missing event so ``required_columns``
    can drop them.
    """
    if status_col not in df.columns:
        raise KeyError(f"Status column '{status_col}' not found")

    df = df.copy()
    df[event_col] = (df[status_col] == event_value).astype(int)
    unknown = df[status_col].isna()
    if unknown.any():
        df[event_col] = df[event_col].where(~unknown)
        logger.warning(f"{int(unknown.sum())} rows have no '{status_col}'; their '{event_col}' is left missing")
    logger.info(f"Derived '{event_col}' from '{status_col}' == {event_value}: "
                f"{int(df[event_col].sum())} events / {len(df)} rows")
    return df


def scale_time(df: pd.DataFrame, time_col: str, divisor: float,
               target: Optional[str] = None) -> pd.DataFrame:
    """Divide ``time_col`` by ``divisor`` (e.g. days to months with 30.44)."""
    if divisor <= 0:
        raise ValueError(f"divisor must be positive, got {divisor}")

    df = df.copy()
    df[target or time_col] = df[time_col] / divisor
    return df


def filter_rows(df: pd.DataFrame, query: str) -> pd.DataFrame:
    """Keep rows matching a pandas query expression."""
    n_before = len(df)
    filtered = df.query(query)
    logger.info(f"Filter '{query}': kept {len(filtered)} of {n_before} rows")
    return filtered


def drop_incomplete(df: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """Drop rows with a missing value in any of ``columns`` (all columns when None)."""
    n_before = len(df)
    cleaned = df.dropna(subset=columns)
    if len(cleaned) < n_before:
        logger.info(f"Dropped {n_before - len(cleaned)} incomplete rows")
    return cleaned


def prepare_data(df: pd.DataFrame, config: Dict) -> pd.DataFrame:
    """
    Apply the derivations and filters declared in the configuration.

    Order: ``rename``, ``derived_columns`` (recode, alternating, event,
    time_scale), then ``filters`` (query strings), then ``required_columns``
    (NA drop).
    """
    rename = config.get('rename')
    if rename:
        df = df.rename(columns=rename)

    derived = config.get('derived_columns') or {}

    for spec in derived.get('recode', []):
        df = recode_column(df, spec['source'], spec['target'], spec['mapping'])

    for spec in derived.get('alternating', []):
        df = assign_alternating(df, spec['target'], spec['values'])

    event_spec = derived.get('event')
    if event_spec:
        df = derive_event(
            df,
            status_col=event_spec['status_col'],
            event_value=event_spec.get('event_value', 1),
            event_col=event_spec.get('event_col', 'event'),
        )

    for spec in derived.get('time_scale', []):
        df = scale_time(df, spec['source'], spec['divisor'], spec.get('target'))

    for query in config.get('filters') or []:
        df = filter_rows(df, query)

    required = config.get('required_columns')
    if required:
        df = drop_incomplete(df, required)

    return df.reset_index(drop=True)


def split_time_to_event_data(X: pd.DataFrame, duration: pd.Series, event: pd.Series, test_size: float = 0.3,
                             random_state: Optional[int] = None):
    """
    Train/test split of covariates, durations and events on the same rows.

    Returns:
        tuple: X_train, X_test, duration_train, duration_test, event_train,
        event_test (pandas objects keep their index and dtype).
    """
    if not 0 < test_size < 1:
        raise ValueError(f"test_size must be between 0 and 1, got {test_size}")
    return train_test_split(X, duration, event, test_size=test_size, random_state=random_state)


# --- Synthetic cohorts ---

def generate_mock_lung_data(n_patients: int = 228, random_state: int = 42) -> pd.DataFrame:
    """
    Generate a synthetic cohort shaped like the NCCTG advanced lung cancer data.

    ``status`` is 1 for censored and 2 for dead, ``sex`` is 1 for male and 2
    for female. Males, older patients and worse ECOG scores have a higher
    hazard. A handful of covariate values are missing.
    """
    rng = np.random.default_rng(random_state)

    data = {
        'inst': rng.choice([1, 3, 7, 11, 12, 13, 15, 16, 22], n_patients).astype(float),
        'age': rng.normal(62, 9, n_patients).clip(39, 82).round(),
        'sex': rng.choice([1, 2], n_patients, p=[0.6, 0.4]),
        'ph_ecog': rng.choice([0, 1, 2, 3], n_patients, p=[0.28, 0.50, 0.21, 0.01]).astype(float),
    }
    data['ph_karno'] = (100 - 10 * data['ph_ecog'] - rng.choice([0, 10], n_patients)).clip(50, 100)
    data['pat_karno'] = (data['ph_karno'] - rng.choice([0, 10, 20], n_patients)).clip(30, 100)
    data['meal_cal'] = rng.normal(930, 400, n_patients).clip(96, 2600).round()
    data['wt_loss'] = rng.normal(10, 13, n_patients).clip(-24, 68).round()

    risk_score = (
        (data['age'] - 62) * 0.015 +
        (data['sex'] == 1).astype(float) * 0.5 +
        data['ph_ecog'] * 0.45
    )

    # Weibull event times, shape 1.3, scale ~ one year
    shape, scale = 1.3, 420.0
    uniform = rng.uniform(size=n_patients)
    event_times = scale * (-np.log(uniform) / np.exp(risk_score)) ** (1.0 / shape)
    censor_times = rng.uniform(150, 1000, n_patients)

    data['time'] = np.maximum(np.minimum(event_times, censor_times).round(), 5.0)
    data['status'] = np.where(event_times <= censor_times, 2, 1)

    df = pd.DataFrame(data)[
        ['inst', 'time', 'status', 'age', 'sex', 'ph_ecog', 'ph_karno', 'pat_karno', 'meal_cal', 'wt_loss']
    ]

    for col, frac in [('meal_cal', 0.2), ('wt_loss', 0.06), ('pat_karno', 0.01)]:
        missing = rng.uniform(size=n_patients) < frac
        df.loc[missing, col] = np.nan

    logger.info(f"Mock lung data generated: {int((df['status'] == 2).sum())} deaths out of {n_patients} patients")
    return df


def generate_mock_biomarker_data(n_patients: int = 300, n_biomarkers: int = 40, block_size: int = 5,
                                 rho: float = 0.5, random_state: int = 42) -> pd.DataFrame:
    """
    Generate a synthetic cohort with block-correlated biomarkers.

    The first biomarker of the first two blocks (``bm_01`` and, with the
    default block size, ``bm_06``) carries a true effect on the hazard, as do
    ``age`` and ``stage``; every other biomarker is noise correlated within
    its block. Times are in months, ``status`` is 1 for an event.
    """
    if n_biomarkers < 2:
        raise ValueError("n_biomarkers must be at least 2")

    rng = np.random.default_rng(random_state)

    blocks = []
    for start in range(0, n_biomarkers, block_size):
        size = min(block_size, n_biomarkers - start)
        cov = np.full((size, size), rho) + np.eye(size) * (1 - rho)
        blocks.append(rng.multivariate_normal(np.zeros(size), cov, n_patients))
    biomarkers = np.hstack(blocks)

    width = len(str(n_biomarkers))
    names = [f"bm_{i + 1:0{max(width, 2)}d}" for i in range(n_biomarkers)]
    df = pd.DataFrame(biomarkers, columns=names)
    df.insert(0, 'patient_id', np.arange(1, n_patients + 1))
    df.insert(1, 'age', rng.normal(60, 10, n_patients).round())
    df.insert(2, 'sex', rng.choice(['Male', 'Female'], n_patients))
    df.insert(3, 'stage', rng.choice([1, 2, 3], n_patients, p=[0.4, 0.4, 0.2]))

    signal = [0, min(block_size, n_biomarkers - 1)]
    risk_score = (
        0.9 * biomarkers[:, signal[0]] -
        0.7 * biomarkers[:, signal[1]] +
        0.02 * (df['age'].values - 60) +
        0.3 * (df['stage'].values - 1)
    )

    baseline_hazard = 1 / 36.0  # per month
    event_times = rng.exponential(1 / (baseline_hazard * np.exp(risk_score)))
    censor_times = rng.uniform(12, 96, n_patients)

    df['time'] = np.maximum(np.minimum(event_times, censor_times), 0.1)
    df['status'] = (event_times <= censor_times).astype(int)

    logger.info(f"Mock biomarker data generated: {n_patients} patients, {n_biomarkers} biomarkers, "
                f"{df['status'].mean():.1%} event rate")
    return df
