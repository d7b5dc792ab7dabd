"""
SurvWrapper - survival analysis and sPLS-Cox workflows on clinical data.

This package provides tools for:
- Loading and preparing right-censored cohort data from CSV files
- Kaplan-Meier, Cox proportional hazards and Weibull regression analyses
- Sparse PLS-Cox modelling of correlated biomarkers with cross-validated sparsity
- Reproducible end-to-end runs driven by YAML configuration
"""

__version__ = "0.1.0"
__author__ = "SurvWrapper Team"
__description__ = "Survival analysis and sPLS-Cox workflows for clinical data"

from .model.wrapper import SurvivalModelWrapper, SPLSCoxWrapper
from .model.spls_cox import SPLSCox

__all__ = ["SurvivalModelWrapper", "SPLSCoxWrapper", "SPLSCox"]
