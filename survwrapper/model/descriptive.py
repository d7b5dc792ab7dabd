"""
Descriptive tabulation of survival cohorts.
"""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def censoring_table(df: pd.DataFrame, event_col: str) -> pd.DataFrame:
    """
    Counts and percentages of each value of the event/status column.

    Missing values are kept as their own row so the percentages always sum
    to 100.
    """
    counts = df[event_col].value_counts(dropna=False).sort_index()
    table = pd.DataFrame({
        'count': counts,
        'percent': counts / len(df) * 100,
    })
    table.index.name = event_col
    return table


def format_surv(time, event) -> List[str]:
    """
    Render right-censored outcomes the way survival printouts do.

    Censored observations get a trailing ``+``: ``["306", "455+", ...]``.
    """
    out = []
    for t, e in zip(np.asarray(time), np.asarray(event)):
        if pd.isna(t):
            out.append("NA")
            continue
        text = f"{t:g}"
        out.append(text if e else f"{text}+")
    return out


def _continuous_summary(values: pd.Series) -> Dict[str, str]:
    values = values.dropna()
    if values.empty:
        return {'mean (sd)': 'NA', 'median [Q1, Q3]': 'NA'}
    q1, median, q3 = values.quantile([0.25, 0.5, 0.75])
    return {
        'mean (sd)': f"{values.mean():.2f} ({values.std():.2f})",
        'median [Q1, Q3]': f"{median:.2f} [{q1:.2f}, {q3:.2f}]",
    }


def _categorical_summary(values: pd.Series, levels: List) -> Dict[str, str]:
    n = values.notna().sum()
    counts = values.value_counts()
    summary = {}
    for level in levels:
        count = int(counts.get(level, 0))
        pct = count / n * 100 if n else 0.0
        summary[str(level)] = f"{count} ({pct:.1f}%)"
    return summary


def descriptive_table(df: pd.DataFrame, variables: List[str], group_col: Optional[str] = None,
                      categorical: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Build a "table one" of the cohort.

    Continuous variables are summarised by mean (sd) and median [Q1, Q3];
    categorical variables by n (%) per level. A ``missing`` row is added for
    variables with missing values.

    Args:
        df: Cohort data.
        variables: Columns to describe.
        group_col: Optional column to stratify by; each level gets a column
            next to ``Overall``.
        categorical: Columns to treat as categorical. Non-numeric columns are
            always categorical.

    Returns:
        DataFrame indexed by (variable, statistic).
    """
    missing_cols = [v for v in variables if v not in df.columns]
    if missing_cols:
        raise KeyError(f"Columns not found: {missing_cols}")

    categorical = set(categorical or [])
    groups = {'Overall': df}
    if group_col is not None:
        for level, sub in df.groupby(group_col, dropna=True):
            groups[f"{group_col}={level}"] = sub

    rows = {}
    rows[('n', '')] = {name: str(len(sub)) for name, sub in groups.items()}

    for var in variables:
        is_categorical = var in categorical or not pd.api.types.is_numeric_dtype(df[var])
        if is_categorical:
            levels = sorted(df[var].dropna().unique(), key=str)
            per_group = {name: _categorical_summary(sub[var], levels) for name, sub in groups.items()}
        else:
            per_group = {name: _continuous_summary(sub[var]) for name, sub in groups.items()}

        for stat in next(iter(per_group.values())).keys():
            rows[(var, stat)] = {name: per_group[name][stat] for name in groups}

        if df[var].isna().any():
            rows[(var, 'missing')] = {name: str(int(sub[var].isna().sum())) for name, sub in groups.items()}

    table = pd.DataFrame.from_dict(rows, orient='index')
    table.index = pd.MultiIndex.from_tuples(table.index, names=['variable', 'statistic'])
    return table


def correlation_matrix(df: pd.DataFrame, columns: Optional[List[str]] = None,
                       method: str = 'pearson') -> pd.DataFrame:
    """Pairwise correlation of the given (numeric) columns."""
    data = df[columns] if columns is not None else df.select_dtypes(include='number')
    non_numeric = [c for c in data.columns if not pd.api.types.is_numeric_dtype(data[c])]
    if non_numeric:
        raise ValueError(f"Correlation requires numeric columns, got: {non_numeric}")
    return data.corr(method=method)


def top_correlated_pairs(corr: pd.DataFrame, n: int = 10) -> pd.DataFrame:
    """The ``n`` most strongly correlated pairs (absolute value), each pair once."""
    rows, cols = np.triu_indices(len(corr.columns), k=1)
    pairs = pd.DataFrame({
        'var1': corr.index[rows],
        'var2': corr.columns[cols],
        'correlation': corr.values[rows, cols],
    }).dropna(subset=['correlation'])
    order = pairs['correlation'].abs().sort_values(ascending=False).index
    return pairs.loc[order].head(n).reset_index(drop=True)
