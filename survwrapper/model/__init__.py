"""
Model components for survival and sPLS-Cox analysis.
"""

from .wrapper import SurvivalModelWrapper, SPLSCoxWrapper
from .spls_cox import SPLSCox, fit_spls_cox, survival_outcome
from .cross_validation import cross_validate_spls_cox, tune_eta
from .comparison import compare_cox_models
from .dataloader import load_configuration, load_csv_data, prepare_data
from .preprocessing import create_preprocessor, apply_preprocessing
from .pipeline import run_survival_pipeline, run_spls_pipeline

__all__ = [
    "SurvivalModelWrapper",
    "SPLSCoxWrapper",
    "SPLSCox",
    "fit_spls_cox",
    "survival_outcome",
    "cross_validate_spls_cox",
    "tune_eta",
    "compare_cox_models",
    "load_configuration",
    "load_csv_data",
    "prepare_data",
    "create_preprocessor",
    "apply_preprocessing",
    "run_survival_pipeline",
    "run_spls_pipeline",
]
