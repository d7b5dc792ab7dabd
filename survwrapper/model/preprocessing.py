"""
Design-matrix construction for the regression models.
"""

import logging
from typing import List, Optional, Tuple

import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

logger = logging.getLogger(__name__)


def infer_categorical_columns(X: pd.DataFrame) -> List[str]:
    """Columns that are not numeric (object, category, bool, string)."""
    return [col for col in X.columns if not pd.api.types.is_numeric_dtype(X[col]) or pd.api.types.is_bool_dtype(X[col])]


def create_preprocessor(X_train: pd.DataFrame, categorical_columns: Optional[List[str]] = None,
                        scale: bool = False) -> ColumnTransformer:
    """
    Create and fit the feature preprocessor on training data.

    Categorical columns are one-hot encoded with the first (sorted) level as
    reference, so coefficients read as contrasts against that level. Numeric
    columns pass through unchanged unless ``scale`` is set.

    Args:
        X_train: Training features.
        categorical_columns: Columns to encode; inferred from dtypes when None.
        scale: Standardise numeric columns.

    Returns:
        ColumnTransformer: fitted preprocessor.
    """
    if categorical_columns is None:
        categorical_columns = infer_categorical_columns(X_train)

    missing = set(categorical_columns) - set(X_train.columns)
    if missing:
        raise ValueError(f"Categorical columns not present in features: {sorted(missing)}")

    numeric_columns = [col for col in X_train.columns if col not in categorical_columns]

    transformers = []
    if numeric_columns:
        transformers.append(('num', StandardScaler() if scale else 'passthrough', numeric_columns))
    if categorical_columns:
        transformers.append((
            'cat',
            OneHotEncoder(drop='first', handle_unknown='ignore', sparse_output=False),
            categorical_columns,
        ))

    preprocessor = ColumnTransformer(transformers, verbose_feature_names_out=False)

    X_fit = X_train.copy()
    for col in categorical_columns:
        X_fit[col] = X_fit[col].astype(str)
    preprocessor.fit(X_fit)

    logger.info(f"Preprocessor fitted: {len(numeric_columns)} numeric, {len(categorical_columns)} categorical columns "
                f"-> {len(preprocessor.get_feature_names_out())} features")
    return preprocessor


def _transform(preprocessor: ColumnTransformer, X: pd.DataFrame) -> pd.DataFrame:
    X = X.copy()
    for name, _, columns in preprocessor.transformers_:
        if name == 'cat':
            for col in columns:
                X[col] = X[col].astype(str)
    array = preprocessor.transform(X)
    return pd.DataFrame(array, columns=preprocessor.get_feature_names_out(), index=X.index).astype(float)


def apply_preprocessing(preprocessor: ColumnTransformer, X_train: pd.DataFrame,
                        X_test: Optional[pd.DataFrame] = None) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """
    Transform train (and optionally test) features with a fitted preprocessor.

    Returns:
        tuple: processed train DataFrame and processed test DataFrame (or None).
    """
    X_train_processed = _transform(preprocessor, X_train)
    X_test_processed = _transform(preprocessor, X_test) if X_test is not None else None
    return X_train_processed, X_test_processed
