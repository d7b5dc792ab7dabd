import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from survwrapper.model.dataloader import (  # noqa: E402
    generate_mock_lung_data,
    generate_mock_biomarker_data,
    prepare_data,
)

SURVIVAL_CONFIG = {
    'model_io_columns': {'duration_col': 'time', 'event_col': 'event'},
    'derived_columns': {
        'recode': [{'source': 'sex', 'target': 'sex_r', 'mapping': {1: 'Male', 2: 'Female'}}],
        'alternating': [{'target': 'treatment', 'values': ['doliprane', 'aspirine']}],
        'event': {'status_col': 'status', 'event_value': 2, 'event_col': 'event'},
    },
    'survival': {
        'status_col': 'status',
        'group_col': 'sex_r',
        'facet_col': 'treatment',
        'categorical': ['sex_r', 'treatment'],
        'describe_variables': ['age', 'sex_r', 'ph_ecog', 'meal_cal', 'treatment'],
        'cox_covariates': ['sex_r'],
        'new_individuals': {'age': [50, 75]},
        'weibull_covariates': ['sex_r'],
        'prediction_covariates': ['age', 'sex_r', 'ph_ecog'],
        'train_fraction': 0.7,
        'random_state': 123,
    },
}

SPLS_CONFIG = {
    'model_io_columns': {'duration_col': 'time', 'event_col': 'status'},
    'spls': {
        'predictor_prefix': 'bm_',
        'clinical_covariates': ['age', 'sex', 'stage'],
        'categorical': ['sex'],
        'group_col': 'sex',
        'eta_grid': [0.3, 0.7],
        'ncomp_max': 2,
        'n_folds': 3,
        'n_jobs': 1,
        'random_state': 0,
    },
}


@pytest.fixture
def survival_config():
    return {key: (value.copy() if isinstance(value, dict) else value) for key, value in SURVIVAL_CONFIG.items()}


@pytest.fixture
def spls_config():
    return {key: (value.copy() if isinstance(value, dict) else value) for key, value in SPLS_CONFIG.items()}


@pytest.fixture
def lung_raw():
    return generate_mock_lung_data(n_patients=228, random_state=1)


@pytest.fixture
def lung(lung_raw):
    return prepare_data(lung_raw, SURVIVAL_CONFIG)


@pytest.fixture
def biomarkers():
    return generate_mock_biomarker_data(n_patients=150, n_biomarkers=12, block_size=4, random_state=3)
