"""
Cross-validated tuning of the sPLS-Cox sparsity threshold.

``cross_validate_spls_cox`` runs scikit-learn's ``cross_validate`` for every
number of components at one ``eta``; ``tune_eta`` sweeps a grid of ``eta``
values over a joblib worker pool and aggregates the fold scores.
"""

import logging
import warnings
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import KFold, cross_validate

from .spls_cox import SPLSCox

logger = logging.getLogger(__name__)


def make_folds(n_folds: int = 5, random_state: Optional[int] = None) -> KFold:
    """Shuffled K-fold splitter shared by every point of the grid."""
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}")
    return KFold(n_splits=n_folds, shuffle=True, random_state=random_state)


def cross_validate_spls_cox(X, y, eta: float, ncomp_max: int = 5, cv=None,
                            penalizer: float = 0.0) -> pd.DataFrame:
    """
    Cross-validated iAUC for ``ncomp = 1..ncomp_max`` at a fixed ``eta``.

    Args:
        X: Predictors (array or DataFrame).
        y: Structured survival outcome.
        eta: Sparsity threshold.
        ncomp_max: Largest number of components tried.
        cv: Splitter or list of (train, test) index pairs; a shuffled
            5-fold KFold when None. Splits are drawn once and reused for
            every ncomp.
        penalizer: Cox penalty on the components.

    Returns:
        DataFrame with one row per (eta, ncomp, fold) and the fold iAUC.
    """
    if ncomp_max < 1:
        raise ValueError(f"ncomp_max must be at least 1, got {ncomp_max}")
    cv = cv if cv is not None else make_folds()
    splits = list(cv.split(X)) if hasattr(cv, "split") else list(cv)

    rows = []
    for ncomp in range(1, ncomp_max + 1):
        estimator = SPLSCox(n_components=ncomp, eta=eta, penalizer=penalizer)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', RuntimeWarning)
            result = cross_validate(estimator, X, y, cv=splits, error_score=np.nan)
        for fold, score in enumerate(result['test_score']):
            rows.append({'eta': eta, 'ncomp': ncomp, 'fold': fold, 'iauc': score})

    results = pd.DataFrame(rows)
    n_failed = int(results['iauc'].isna().sum())
    if n_failed:
        logger.warning(f"eta={eta}: {n_failed} of {len(results)} fold scores could not be computed")
    return results


def summarise_cv_results(cv_results: pd.DataFrame) -> pd.DataFrame:
    """Mean, standard deviation and standard error of the fold iAUC per (eta, ncomp)."""
    grouped = cv_results.groupby(['eta', 'ncomp'])['iauc']
    summary = pd.DataFrame({
        'mean_iauc': grouped.mean(),
        'sd_iauc': grouped.std(),
        'n_folds': grouped.count(),
    })
    summary['se_iauc'] = summary['sd_iauc'] / np.sqrt(summary['n_folds'])
    return summary.reset_index()


def select_best(summary: pd.DataFrame) -> Dict:
    """
    Best (eta, ncomp) by mean iAUC.

    Ties go to fewer components, then to the smaller eta.
    """
    valid = summary.dropna(subset=['mean_iauc'])
    if valid.empty:
        raise RuntimeError("No (eta, ncomp) pair produced a finite cross-validated iAUC")
    best = valid.sort_values(['mean_iauc', 'ncomp', 'eta'], ascending=[False, True, True]).iloc[0]
    return {
        'best_eta': float(best['eta']),
        'best_ncomp': int(best['ncomp']),
        'best_iauc': float(best['mean_iauc']),
    }


def tune_eta(X, y, eta_grid: Sequence[float], ncomp_max: int = 5, n_folds: int = 5,
             random_state: Optional[int] = None, n_jobs: int = 1, penalizer: float = 0.0,
             verbose: int = 0) -> Dict:
    """
    Sweep the sparsity threshold with cross-validation.

    Every ``eta`` is cross-validated on the same folds; the grid points run
    in parallel on ``n_jobs`` joblib workers.

    Returns:
        dict with ``cv_results`` (per fold), ``summary`` (per eta/ncomp),
        ``best_eta``, ``best_ncomp`` and ``best_iauc``.
    """
    eta_grid = [float(eta) for eta in eta_grid]
    if not eta_grid:
        raise ValueError("eta_grid must contain at least one value")
    invalid = [eta for eta in eta_grid if not 0 <= eta < 1]
    if invalid:
        raise ValueError(f"eta values must be in [0, 1), got {invalid}")

    # One partition shared by every eta and ncomp
    splits = list(make_folds(n_folds, random_state).split(X))
    logger.info(f"Cross-validating sPLS-Cox over eta={eta_grid}, ncomp=1..{ncomp_max}, "
                f"{n_folds} folds, n_jobs={n_jobs}")

    per_eta = Parallel(n_jobs=n_jobs, verbose=verbose)(
        delayed(cross_validate_spls_cox)(X, y, eta, ncomp_max, splits, penalizer) for eta in eta_grid
    )

    cv_results = pd.concat(per_eta, ignore_index=True)
    summary = summarise_cv_results(cv_results)
    best = select_best(summary)
    logger.info(f"Best sPLS-Cox parameters: eta={best['best_eta']}, ncomp={best['best_ncomp']}, "
                f"iAUC={best['best_iauc']:.3f}")

    return {'cv_results': cv_results, 'summary': summary, **best}
