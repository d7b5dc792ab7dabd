import numpy as np
import pandas as pd
import pytest

from survwrapper.model.preprocessing import (
    infer_categorical_columns,
    create_preprocessor,
    apply_preprocessing,
)


@pytest.fixture
def features():
    return pd.DataFrame({
        'age': [50.0, 60.0, 70.0, 80.0],
        'sex_r': ['Male', 'Female', 'Male', 'Female'],
        'stage': [1, 2, 3, 1],
    }, index=[10, 11, 12, 13])


def test_infer_categorical_columns(features):
    assert infer_categorical_columns(features) == ['sex_r']


def test_dummy_coding_uses_first_level_as_reference(features):
    prep = create_preprocessor(features)

    X, _ = apply_preprocessing(prep, features)

    assert list(X.columns) == ['age', 'stage', 'sex_r_Male']
    assert list(X['sex_r_Male']) == [1.0, 0.0, 1.0, 0.0]
    assert list(X.index) == [10, 11, 12, 13]


def test_numeric_column_declared_categorical(features):
    prep = create_preprocessor(features, categorical_columns=['sex_r', 'stage'])

    X, _ = apply_preprocessing(prep, features)

    assert {'stage_2', 'stage_3'} <= set(X.columns)
    assert 'stage' not in X.columns


def test_scaling_and_test_transform(features):
    prep = create_preprocessor(features, scale=True)
    test = pd.DataFrame({'age': [65.0], 'sex_r': ['Other'], 'stage': [2]})

    X_train, X_test = apply_preprocessing(prep, features, test)

    assert np.isclose(X_train['age'].mean(), 0.0)
    # Unknown level encodes as the reference
    assert X_test['sex_r_Male'].iloc[0] == 0.0


def test_unknown_categorical_column_rejected(features):
    with pytest.raises(ValueError):
        create_preprocessor(features, categorical_columns=['smoker'])
