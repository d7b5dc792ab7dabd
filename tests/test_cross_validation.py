import numpy as np
import pandas as pd
import pytest
from sklearn.model_selection import KFold

from survwrapper.model import cross_validation
from survwrapper.model.spls_cox import survival_outcome
from survwrapper.model.cross_validation import (
    make_folds,
    cross_validate_spls_cox,
    summarise_cv_results,
    select_best,
    tune_eta,
)


@pytest.fixture
def Xy(biomarkers):
    predictors = [c for c in biomarkers.columns if c.startswith('bm_')]
    return biomarkers[predictors], survival_outcome(biomarkers['time'], biomarkers['status'])


def test_make_folds():
    folds = make_folds(4, random_state=1)

    assert isinstance(folds, KFold)
    assert folds.get_n_splits() == 4
    with pytest.raises(ValueError):
        make_folds(1)


def test_cross_validate_one_eta(Xy):
    X, y = Xy

    results = cross_validate_spls_cox(X, y, eta=0.5, ncomp_max=2, cv=make_folds(3, random_state=0))

    assert list(results.columns) == ['eta', 'ncomp', 'fold', 'iauc']
    assert len(results) == 2 * 3
    assert set(results['ncomp']) == {1, 2}
    assert results['iauc'].dropna().between(0, 1).all()


def test_summarise_and_select_best_tie_breaking():
    cv_results = pd.DataFrame({
        'eta': [0.2, 0.2, 0.2, 0.2, 0.5, 0.5, 0.5, 0.5],
        'ncomp': [1, 1, 2, 2, 1, 1, 2, 2],
        'fold': [0, 1, 0, 1, 0, 1, 0, 1],
        'iauc': [0.70, 0.70, 0.70, 0.70, 0.70, 0.70, 0.60, np.nan],
    })

    summary = summarise_cv_results(cv_results)
    best = select_best(summary)

    assert list(summary.columns) == ['eta', 'ncomp', 'mean_iauc', 'sd_iauc', 'n_folds', 'se_iauc']
    row = summary[(summary['eta'] == 0.5) & (summary['ncomp'] == 2)].iloc[0]
    assert row['n_folds'] == 1 and np.isclose(row['mean_iauc'], 0.6)
    assert best == {'best_eta': 0.2, 'best_ncomp': 1, 'best_iauc': 0.7}


def test_select_best_all_nan():
    summary = pd.DataFrame({'eta': [0.1], 'ncomp': [1], 'mean_iauc': [np.nan]})

    with pytest.raises(RuntimeError):
        select_best(summary)


def test_tune_eta_grid(Xy):
    X, y = Xy

    result = tune_eta(X, y, eta_grid=[0.2, 0.6], ncomp_max=2, n_folds=3, random_state=0, n_jobs=1)

    assert set(result) == {'cv_results', 'summary', 'best_eta', 'best_ncomp', 'best_iauc'}
    assert len(result['summary']) == 4
    assert result['best_eta'] in (0.2, 0.6)
    assert result['best_ncomp'] in (1, 2)
    assert result['best_iauc'] == result['summary']['mean_iauc'].max()


def test_tune_eta_is_reproducible_in_parallel(Xy):
    X, y = Xy

    serial = tune_eta(X, y, eta_grid=[0.3, 0.7], ncomp_max=1, n_folds=3, random_state=5, n_jobs=1)
    parallel = tune_eta(X, y, eta_grid=[0.3, 0.7], ncomp_max=1, n_folds=3, random_state=5, n_jobs=2)

    pd.testing.assert_frame_equal(serial['cv_results'], parallel['cv_results'])


@pytest.mark.parametrize("grid", [[], [1.0], [-0.1, 0.5]])
def test_tune_eta_rejects_bad_grid(Xy, grid):
    X, y = Xy

    with pytest.raises(ValueError):
        tune_eta(X, y, eta_grid=grid)


def test_tune_eta_shares_folds_without_seed(Xy, monkeypatch):
    X, y = Xy
    seen = []
    real_cross_validate = cross_validation.cross_validate

    def recording_cross_validate(estimator, X, y, cv, **kwargs):
        folds = [tuple(np.sort(test)) for _, test in cv]
        seen.append(((estimator.eta, estimator.n_components), folds))
        return real_cross_validate(estimator, X, y, cv=cv, **kwargs)

    monkeypatch.setattr(cross_validation, "cross_validate", recording_cross_validate)

    tune_eta(X, y, eta_grid=[0.3, 0.7], ncomp_max=2, n_folds=3, random_state=None, n_jobs=1)

    assert len(seen) == 4
    assert {grid_point for grid_point, _ in seen} == {(0.3, 1), (0.3, 2), (0.7, 1), (0.7, 2)}
    first = seen[0][1]
    assert all(folds == first for _, folds in seen)
    # Each row is tested exactly once
    assert sorted(np.concatenate(first)) == list(range(len(X)))


def test_cross_validate_accepts_precomputed_splits(Xy):
    X, y = Xy
    splits = list(make_folds(3, random_state=2).split(X))

    from_list = cross_validate_spls_cox(X, y, eta=0.5, ncomp_max=1, cv=splits)
    from_splitter = cross_validate_spls_cox(X, y, eta=0.5, ncomp_max=1, cv=make_folds(3, random_state=2))

    pd.testing.assert_frame_equal(from_list, from_splitter)
