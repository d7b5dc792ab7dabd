"""
Side-by-side Cox models on alternative covariate sets.
"""

import logging
from typing import Dict, List, Optional

import pandas as pd

from .survival_models import fit_cox

logger = logging.getLogger(__name__)


def compare_cox_models(df: pd.DataFrame, duration_col: str, event_col: str,
                       covariate_sets: Dict[str, List[str]], categorical: Optional[List[str]] = None,
                       complete_cases: bool = True, **model_kwargs) -> pd.DataFrame:
    """
    Fit one Cox model per named covariate set and tabulate their fit.

    With ``complete_cases`` every model is fitted on the rows complete for
    the union of all sets, so log-likelihoods and AICs are comparable.

    Returns:
        DataFrame indexed by model name: number of observations and
        coefficients, log-likelihood, partial AIC, concordance and the
        likelihood-ratio test against the model without covariates.
    """
    if not covariate_sets:
        raise ValueError("covariate_sets must name at least one model")

    data = df
    if complete_cases:
        union = sorted({c for covariates in covariate_sets.values() for c in covariates})
        data = df.dropna(subset=union + [duration_col, event_col])

    rows = []
    for name, covariates in covariate_sets.items():
        if not covariates:
            logger.warning(f"Model '{name}' has no covariates, skipped")
            continue
        categorical_here = [c for c in (categorical or []) if c in covariates] if categorical is not None else None
        model, _ = fit_cox(data, duration_col, event_col, list(covariates),
                           categorical=categorical_here, **model_kwargs)
        lr_test = model.log_likelihood_ratio_test()
        rows.append({
            'model': name,
            'n': int(len(data.dropna(subset=list(covariates) + [duration_col, event_col]))),
            'n_coefficients': int(model.params_.shape[0]),
            'log_likelihood': float(model.log_likelihood_),
            'aic_partial': float(model.AIC_partial_),
            'concordance': float(model.concordance_index_),
            'lr_statistic': float(lr_test.test_statistic),
            'lr_df': int(lr_test.degrees_freedom),
            'lr_p_value': float(lr_test.p_value),
        })

    if not rows:
        raise ValueError("Every covariate set is empty; nothing to compare")

    table = pd.DataFrame(rows).set_index('model')
    logger.info(f"Compared {len(table)} Cox models")
    return table
