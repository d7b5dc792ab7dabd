"""
Sparse PLS regression for censored survival outcomes (sPLS-Cox).

The estimator follows the deviance-residual route: the survival outcome is
summarised by the deviance residuals of the covariate-free Cox model, a
sparse PLS regression of those residuals on the predictors yields a few
latent components built from a subset of predictors, and a Cox model is
fitted on the components.

PLS decomposition is scikit-learn's ``PLSRegression``, the Cox fit is
lifelines' ``CoxPHFitter`` and the iAUC criterion is scikit-survival's
``cumulative_dynamic_auc``.
"""

import logging
import warnings
from typing import List

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter, NelsonAalenFitter
from sklearn.base import BaseEstimator
from sklearn.cross_decomposition import PLSRegression
from sklearn.preprocessing import StandardScaler
from sklearn.utils.validation import check_is_fitted
from sksurv.metrics import cumulative_dynamic_auc
from sksurv.util import Surv

logger = logging.getLogger(__name__)


def soft_threshold(z: np.ndarray, eta: float) -> np.ndarray:
    """
    Soft-threshold a direction vector relative to its largest entry.

    Entries with ``|z| < eta * max|z|`` become zero, the others shrink
    towards zero by that amount.
    """
    z = np.asarray(z, dtype=float)
    if not 0 <= eta < 1:
        raise ValueError(f"eta must be in [0, 1), got {eta}")
    shrunk = np.abs(z) - eta * np.max(np.abs(z))
    return np.where(shrunk >= 0, np.sign(z) * shrunk, 0.0)


def deviance_residuals(time, event) -> np.ndarray:
    """
    Deviance residuals of the Cox model without covariates.

    The cumulative hazard is the Nelson-Aalen estimate; the martingale
    residual is ``event - H(t)``.
    """
    time = np.asarray(time, dtype=float)
    event = np.asarray(event, dtype=float)

    naf = NelsonAalenFitter(nelson_aalen_smoothing=False)
    naf.fit(time, event_observed=event)
    hazard = naf.cumulative_hazard_.iloc[:, 0]
    positions = np.searchsorted(hazard.index.values, time, side='right') - 1
    cumulative_hazard = hazard.values[positions]

    martingale = event - cumulative_hazard
    log_term = np.where(event > 0, np.log(np.where(event > 0, event - martingale, 1.0)), 0.0)
    return np.sign(martingale) * np.sqrt(np.maximum(-2.0 * (martingale + event * log_term), 0.0))


def survival_outcome(time, event) -> np.ndarray:
    """Structured ``(event, time)`` array understood by scikit-survival."""
    return Surv.from_arrays(event=np.asarray(event).astype(bool), time=np.asarray(time, dtype=float))


def _unpack_outcome(y):
    names = y.dtype.names
    if names is None or len(names) != 2:
        raise ValueError("y must be a structured array with an event and a time field, see survival_outcome()")
    event_field, time_field = names
    return np.asarray(y[time_field], dtype=float), np.asarray(y[event_field]).astype(bool)


class SPLSCox(BaseEstimator):
    """
    sPLS-Cox: sparse PLS components of the predictors, then a Cox model.

    Parameters
    ----------
    n_components : int
        Number of latent components (``ncomp``).
    eta : float
        Sparsity threshold in [0, 1); larger values keep fewer predictors.
    penalizer : float
        Ridge penalty of the Cox fit on the components.
    """

    def __init__(self, n_components: int = 2, eta: float = 0.5, penalizer: float = 0.0):
        self.n_components = n_components
        self.eta = eta
        self.penalizer = penalizer

    def _check_params(self):
        if int(self.n_components) != self.n_components or self.n_components < 1:
            raise ValueError(f"n_components must be a positive integer, got {self.n_components}")
        if not 0 <= self.eta < 1:
            raise ValueError(f"eta must be in [0, 1), got {self.eta}")

    def _as_array(self, X) -> np.ndarray:
        if isinstance(X, pd.DataFrame):
            return X.to_numpy(dtype=float)
        return np.asarray(X, dtype=float)

    def fit(self, X, y):
        """
        Fit the model.

        Parameters
        ----------
        X : array-like or DataFrame of shape (n_samples, n_features)
        y : structured array with an event (bool) and a time field
        """
        self._check_params()
        time, event = _unpack_outcome(y)
        self.feature_names_ = (list(X.columns) if isinstance(X, pd.DataFrame)
                               else [f"x{i + 1}" for i in range(np.shape(X)[1])])
        X = self._as_array(X)
        if np.isnan(X).any():
            raise ValueError("X contains missing values")
        if not event.any():
            raise ValueError("At least one event is required to fit sPLS-Cox")

        residuals = deviance_residuals(time, event)
        target = residuals - residuals.mean()

        self.scaler_ = StandardScaler()
        Xs = self.scaler_.fit_transform(X)

        n_features = Xs.shape[1]
        beta = np.zeros(n_features)
        current = target.copy()
        active = np.array([], dtype=int)
        pls = None

        for k in range(1, int(self.n_components) + 1):
            direction = soft_threshold(Xs.T @ current, self.eta)
            active = np.flatnonzero((direction != 0) | (beta != 0))
            if active.size == 0:
                raise ValueError(f"No predictor selected with eta={self.eta}")

            pls = PLSRegression(n_components=min(k, active.size), scale=False)
            pls.fit(Xs[:, active], target)

            beta = np.zeros(n_features)
            beta[active] = np.ravel(pls.coef_)
            current = target - Xs @ beta

        self.active_ = active
        self.pls_ = pls
        self.n_components_ = pls.n_components
        self.selected_features_ = [self.feature_names_[i] for i in active]

        scores = self._scores(Xs)
        cox_df = scores.copy()
        cox_df['time'] = time
        cox_df['event'] = event.astype(int)
        self.cox_model_ = CoxPHFitter(penalizer=self.penalizer)
        self.cox_model_.fit(cox_df, duration_col='time', event_col='event')

        # The linear predictor is linear in the standardised active predictors
        gamma = self.cox_model_.params_.values
        unit = pls.transform(np.eye(active.size)) - pls.transform(np.zeros((1, active.size)))
        coef_std = np.zeros(n_features)
        coef_std[active] = unit @ gamma
        self.coef_std_ = pd.Series(coef_std, index=self.feature_names_, name='coef_std')
        self.coef_ = pd.Series(coef_std / self.scaler_.scale_, index=self.feature_names_, name='coef')

        # Kept for the censoring distribution used by score()
        self.train_outcome_ = survival_outcome(time, event)

        logger.info(f"sPLS-Cox fitted: eta={self.eta}, ncomp={self.n_components_}, "
                    f"{active.size}/{n_features} predictors selected")
        return self

    def _scores(self, Xs: np.ndarray) -> pd.DataFrame:
        latent = self.pls_.transform(Xs[:, self.active_])
        columns = [f"comp_{i + 1}" for i in range(latent.shape[1])]
        return pd.DataFrame(latent, columns=columns)

    def transform(self, X) -> pd.DataFrame:
        """Latent sPLS components of ``X``."""
        check_is_fitted(self, 'cox_model_')
        X = self._as_array(X)
        return self._scores(self.scaler_.transform(X))

    def predict(self, X) -> np.ndarray:
        """Log partial hazard (risk score, higher means shorter survival)."""
        scores = self.transform(X)
        return np.asarray(self.cox_model_.predict_log_partial_hazard(scores), dtype=float)

    def evaluation_times(self, y, n_times: int = 10) -> np.ndarray:
        """Event-time percentiles of ``y`` that lie inside the training and test follow-up."""
        check_is_fitted(self, 'train_outcome_')
        time, event = _unpack_outcome(y)
        train_time, _ = _unpack_outcome(self.train_outcome_)

        upper = min(time.max(), train_time.max())
        lower = time.min()
        event_times = time[event & (time > lower) & (time < upper)]
        if event_times.size == 0:
            return np.array([])
        times = np.unique(np.percentile(event_times, np.linspace(10, 90, n_times)))
        return times[(times > lower) & (times < upper)]

    def score(self, X, y) -> float:
        """
        Integrated time-dependent AUC (iAUC) on ``(X, y)``.

        Returns NaN, with a warning, when the held-out data has no usable
        event times.
        """
        check_is_fitted(self, 'cox_model_')
        time, event = _unpack_outcome(y)
        train_time, _ = _unpack_outcome(self.train_outcome_)

        # The censoring distribution is only defined up to the last training time
        keep = time < train_time.max()
        times = self.evaluation_times(y[keep]) if keep.any() else np.array([])
        if times.size == 0:
            warnings.warn("No evaluable event times for iAUC; returning NaN", RuntimeWarning)
            return np.nan

        risk = self.predict(self._as_array(X)[keep])
        _, iauc = cumulative_dynamic_auc(self.train_outcome_, y[keep], risk, times)
        return float(iauc)

    def get_coefficients(self, nonzero_only: bool = True) -> pd.DataFrame:
        """Coefficients on the original and standardised predictor scales."""
        check_is_fitted(self, 'coef_')
        table = pd.DataFrame({'coef': self.coef_, 'coef_std': self.coef_std_})
        table['hazard_ratio'] = np.exp(table['coef'])
        if nonzero_only:
            table = table[table['coef'] != 0]
        return table.reindex(table['coef_std'].abs().sort_values(ascending=False).index)


def fit_spls_cox(df: pd.DataFrame, predictors: List[str], duration_col: str, event_col: str,
                 n_components: int = 2, eta: float = 0.5, penalizer: float = 0.0) -> SPLSCox:
    """Fit sPLS-Cox on DataFrame columns, dropping incomplete rows."""
    data = df[list(predictors) + [duration_col, event_col]].dropna()
    if len(data) < len(df):
        logger.info(f"{len(df) - len(data)} incomplete rows dropped before sPLS-Cox")
    y = survival_outcome(data[duration_col], data[event_col])
    return SPLSCox(n_components=n_components, eta=eta, penalizer=penalizer).fit(data[list(predictors)], y)
