"""
Kaplan-Meier, Cox proportional hazards and Weibull AFT models.

All estimation is delegated to lifelines; this module arranges inputs,
builds design matrices and turns fitted models into tables.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter, KaplanMeierFitter, NelsonAalenFitter, WeibullAFTFitter
from lifelines.statistics import multivariate_logrank_test, proportional_hazard_test
from lifelines.utils import concordance_index, median_survival_times
from sklearn.compose import ColumnTransformer

from .preprocessing import create_preprocessor, apply_preprocessing

logger = logging.getLogger(__name__)


# --- Non-parametric ---

def fit_kaplan_meier(df: pd.DataFrame, duration_col: str, event_col: str,
                     group_col: Optional[str] = None, alpha: float = 0.05) -> Dict[str, KaplanMeierFitter]:
    """
    Fit Kaplan-Meier estimators, overall or per level of ``group_col``.

    Returns:
        dict mapping a label ("All" or the group level) to a fitted
        KaplanMeierFitter.
    """
    data = df.dropna(subset=[duration_col, event_col])
    if data.empty:
        raise ValueError("No complete observations to fit Kaplan-Meier estimator")

    if group_col is None:
        kmf = KaplanMeierFitter(alpha=alpha)
        kmf.fit(data[duration_col], event_observed=data[event_col], label='All')
        return {'All': kmf}

    fitters = {}
    for level, sub in data.dropna(subset=[group_col]).groupby(group_col):
        label = str(level)
        kmf = KaplanMeierFitter(alpha=alpha)
        kmf.fit(sub[duration_col], event_observed=sub[event_col], label=label)
        fitters[label] = kmf
    logger.info(f"Kaplan-Meier fitted for {len(fitters)} levels of '{group_col}'")
    return fitters


def kaplan_meier_summary(fitters: Dict[str, KaplanMeierFitter]) -> pd.DataFrame:
    """n, events, median survival and its confidence interval per curve."""
    rows = []
    for label, kmf in fitters.items():
        median_ci = median_survival_times(kmf.confidence_interval_)
        rows.append({
            'group': label,
            'n': len(kmf.durations),
            'events': int(np.sum(kmf.event_observed)),
            'median': kmf.median_survival_time_,
            'median_lower': median_ci.iloc[0, 0],
            'median_upper': median_ci.iloc[0, 1],
        })
    return pd.DataFrame(rows).set_index('group')


def survival_table(kmf: KaplanMeierFitter, times: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """
    Life table of a fitted Kaplan-Meier curve.

    Without ``times`` one row per observed event time; with ``times`` the
    step function is read at those times.
    """
    ci = kmf.confidence_interval_survival_function_
    survival = kmf.survival_function_.iloc[:, 0]

    if times is None:
        events = kmf.event_table
        events = events[events['observed'] > 0]
        index = events.index
        table = pd.DataFrame({
            'n_risk': events['at_risk'].values,
            'n_event': events['observed'].values,
            'n_censor': events['censored'].values,
        }, index=index)
    else:
        index = pd.Index(np.asarray(times, dtype=float))
        durations = np.asarray(kmf.durations)
        table = pd.DataFrame({'n_risk': [int((durations >= t).sum()) for t in index]}, index=index)

    table['survival'] = survival.reindex(survival.index.union(index)).ffill().loc[index].values
    table['lower'] = ci.iloc[:, 0].reindex(ci.index.union(index)).ffill().loc[index].values
    table['upper'] = ci.iloc[:, 1].reindex(ci.index.union(index)).ffill().loc[index].values
    table.index.name = 'time'
    return table


def compare_groups(df: pd.DataFrame, duration_col: str, event_col: str, group_col: str) -> Dict:
    """Log-rank test of equal survival across the levels of ``group_col``."""
    data = df.dropna(subset=[duration_col, event_col, group_col])
    if data[group_col].nunique() < 2:
        raise ValueError(f"Column '{group_col}' needs at least two levels for a log-rank test")

    result = multivariate_logrank_test(data[duration_col], data[group_col], data[event_col])
    logger.info(f"Log-rank test on '{group_col}': chi2={result.test_statistic:.3f}, p={result.p_value:.4g}")
    return {
        'test_statistic': float(result.test_statistic),
        'p_value': float(result.p_value),
        'degrees_of_freedom': int(result.degrees_of_freedom),
        'n_groups': int(data[group_col].nunique()),
    }


def fit_null_hazard_model(df: pd.DataFrame, duration_col: str, event_col: str) -> NelsonAalenFitter:
    """
    Baseline of the covariate-free Cox model.

    With no covariates the Breslow estimator of the Cox baseline hazard is
    the Nelson-Aalen estimator.
    """
    data = df.dropna(subset=[duration_col, event_col])
    naf = NelsonAalenFitter(nelson_aalen_smoothing=False)
    naf.fit(data[duration_col], event_observed=data[event_col], label='null_model')
    return naf


def null_model_survival(naf: NelsonAalenFitter) -> pd.DataFrame:
    """exp(-H(t)) of a fitted Nelson-Aalen estimator."""
    return np.exp(-naf.cumulative_hazard_)


# --- Regression helpers ---

def _raw_covariates(preprocessor: ColumnTransformer) -> List[str]:
    return list(preprocessor.feature_names_in_)


def design_frame(df: pd.DataFrame, preprocessor: ColumnTransformer, duration_col: Optional[str] = None,
                 event_col: Optional[str] = None) -> pd.DataFrame:
    """Processed covariates, with the outcome columns appended when given."""
    X, _ = apply_preprocessing(preprocessor, df[_raw_covariates(preprocessor)])
    if duration_col is not None:
        X[duration_col] = df[duration_col].values
    if event_col is not None:
        X[event_col] = df[event_col].values
    return X


def _prepare_regression(df, duration_col, event_col, covariates, categorical, scale=False):
    if not covariates:
        raise ValueError("At least one covariate is required")
    missing = [c for c in covariates + [duration_col, event_col] if c not in df.columns]
    if missing:
        raise KeyError(f"Columns not found: {missing}")

    data = df[covariates + [duration_col, event_col]].dropna()
    if len(data) < len(df):
        logger.info(f"{len(df) - len(data)} observations deleted due to missingness")

    preprocessor = create_preprocessor(data[covariates], categorical_columns=categorical, scale=scale)
    return design_frame(data, preprocessor, duration_col, event_col), preprocessor


def interpret_hazard_coefficient(coef: float, p_value: float, alpha: float = 0.05) -> str:
    """Interpret a coefficient's clinical meaning."""
    if p_value > alpha:
        return "Not statistically significant"

    if coef > 0:
        return "Increases risk (hazard)"
    elif coef < 0:
        return "Decreases risk (hazard)"
    else:
        return "No effect on risk"


def interpret_aft_coefficient(coef: float, p_value: float, alpha: float = 0.05) -> str:
    """Interpret an accelerated failure time coefficient."""
    if p_value > alpha:
        return "Not statistically significant"

    if coef > 0:
        return "Decelerates the event process (longer times)"
    elif coef < 0:
        return "Accelerates the event process (shorter times)"
    else:
        return "No effect on event times"


# --- Semi-parametric ---

def fit_cox(df: pd.DataFrame, duration_col: str, event_col: str, covariates: List[str],
            categorical: Optional[List[str]] = None, **model_kwargs) -> Tuple[CoxPHFitter, ColumnTransformer]:
    """
    Fit a Cox proportional hazards model.

    Rows with missing covariates are dropped. Categorical covariates are
    dummy coded against their first level.

    Args:
        df: Cohort data.
        duration_col: Time-to-event column.
        event_col: Binary event column.
        covariates: Raw covariate columns.
        categorical: Columns to dummy code; inferred from dtypes when None.
        **model_kwargs: Passed to CoxPHFitter (e.g. penalizer, l1_ratio).

    Returns:
        tuple: fitted CoxPHFitter and the fitted preprocessor.
    """
    train_df, preprocessor = _prepare_regression(df, duration_col, event_col, list(covariates), categorical)

    logger.info(f"Fitting Cox PH model on {len(train_df)} observations with covariates {list(covariates)}")
    model = CoxPHFitter(**model_kwargs)
    model.fit(train_df, duration_col=duration_col, event_col=event_col)
    logger.info(f"Cox PH model fitted: concordance={model.concordance_index_:.3f}, "
                f"partial AIC={model.AIC_partial_:.2f}")
    return model, preprocessor


def hazard_ratio_table(model: CoxPHFitter, alpha: float = 0.05) -> pd.DataFrame:
    """Coefficients, hazard ratios with confidence bounds, p-values and a reading of each."""
    summary = model.summary
    lower = next(c for c in summary.columns if c.startswith('exp(coef) lower'))
    upper = next(c for c in summary.columns if c.startswith('exp(coef) upper'))

    table = pd.DataFrame({
        'coef': summary['coef'],
        'se(coef)': summary['se(coef)'],
        'hazard_ratio': summary['exp(coef)'],
        'hr_lower': summary[lower],
        'hr_upper': summary[upper],
        'z': summary['z'],
        'p': summary['p'],
    })
    table['interpretation'] = [
        interpret_hazard_coefficient(c, p, alpha) for c, p in zip(table['coef'], table['p'])
    ]
    return table


def check_proportional_hazards(model: CoxPHFitter, training_df: pd.DataFrame,
                               time_transform: str = 'rank') -> pd.DataFrame:
    """Schoenfeld residual test of the proportional hazards assumption, per covariate."""
    result = proportional_hazard_test(model, training_df, time_transform=time_transform)
    return result.summary


def predict_cox_survival(model: CoxPHFitter, preprocessor: ColumnTransformer, newdata: pd.DataFrame,
                         times: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """
    Survival curves for specific individuals.

    Returns:
        DataFrame indexed by time with one column per row of ``newdata``
        (labelled by its index).
    """
    X = design_frame(newdata, preprocessor)
    curves = model.predict_survival_function(X, times=times)
    curves.columns = newdata.index
    return curves


def adjusted_survival_curves(model: CoxPHFitter, preprocessor: ColumnTransformer, df: pd.DataFrame,
                             variable: str, levels: Optional[List] = None) -> pd.DataFrame:
    """
    Covariate-adjusted curves by the average method.

    For each level of ``variable`` every subject is assigned that level and
    the predicted survival curves are averaged.
    """
    covariates = _raw_covariates(preprocessor)
    if variable not in covariates:
        raise ValueError(f"'{variable}' is not a covariate of the model: {covariates}")

    data = df[covariates].dropna()
    if levels is None:
        levels = sorted(data[variable].unique(), key=str)

    curves = {}
    for level in levels:
        counterfactual = data.copy()
        counterfactual[variable] = level
        predicted = model.predict_survival_function(design_frame(counterfactual, preprocessor))
        curves[str(level)] = predicted.mean(axis=1)
    return pd.DataFrame(curves)


# --- Parametric ---

def fit_weibull(df: pd.DataFrame, duration_col: str, event_col: str, covariates: List[str],
                categorical: Optional[List[str]] = None,
                **model_kwargs) -> Tuple[WeibullAFTFitter, ColumnTransformer]:
    """
    Fit a Weibull accelerated failure time regression.

    Positive coefficients stretch event times (the process decelerates),
    negative coefficients shrink them.
    """
    train_df, preprocessor = _prepare_regression(df, duration_col, event_col, list(covariates), categorical)
    if (train_df[duration_col] <= 0).any():
        raise ValueError(f"Weibull regression requires strictly positive durations in '{duration_col}'")

    logger.info(f"Fitting Weibull AFT model on {len(train_df)} observations with covariates {list(covariates)}")
    model = WeibullAFTFitter(**model_kwargs)
    model.fit(train_df, duration_col=duration_col, event_col=event_col)
    logger.info(f"Weibull AFT model fitted: AIC={model.AIC_:.2f}")
    return model, preprocessor


def aft_coefficient_table(model: WeibullAFTFitter, alpha: float = 0.05) -> pd.DataFrame:
    """
    Location coefficients of the Weibull fit plus its log-scale parameter.

    The ``lambda_`` rows are the location part (``Intercept`` included); the
    ``rho_`` intercept is reported as ``Log(scale)`` in the survreg sense,
    i.e. ``-log(rho)``.
    """
    summary = model.summary
    location = summary.loc['lambda_']
    table = pd.DataFrame({
        'coef': location['coef'],
        'se(coef)': location['se(coef)'],
        'exp(coef)': location['exp(coef)'],
        'z': location['z'],
        'p': location['p'],
    })
    table['interpretation'] = [
        interpret_aft_coefficient(c, p, alpha) if name != 'Intercept' else 'Location'
        for name, c, p in zip(table.index, table['coef'], table['p'])
    ]

    log_rho = summary.loc[('rho_', 'Intercept')]
    table.loc['Log(scale)'] = pd.Series({
        'coef': -log_rho['coef'],
        'se(coef)': log_rho['se(coef)'],
        'exp(coef)': np.exp(-log_rho['coef']),
        'z': -log_rho['z'],
        'p': log_rho['p'],
        'interpretation': 'Scale',
    })
    return table


def weibull_quantile_curve(model: WeibullAFTFitter, preprocessor: ColumnTransformer, newdata: pd.DataFrame,
                           levels: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """
    Predicted time at which survival falls to each level.

    Returns:
        DataFrame indexed by survival level (descending) with one column of
        times per row of ``newdata``.
    """
    if levels is None:
        levels = np.round(np.linspace(0.99, 0.01, 99), 2)
    levels = np.asarray(levels, dtype=float)
    if ((levels <= 0) | (levels >= 1)).any():
        raise ValueError("Survival levels must lie strictly between 0 and 1")

    X = design_frame(newdata, preprocessor)
    times = np.vstack([np.asarray(model.predict_percentile(X, p=level), dtype=float) for level in levels])
    curves = pd.DataFrame(times, index=pd.Index(levels, name='survival'), columns=newdata.index)
    return curves


def predict_weibull_time(model: WeibullAFTFitter, preprocessor: ColumnTransformer,
                         newdata: pd.DataFrame) -> pd.Series:
    """
    Weibull scale lambda(x) for each row.

    lambda is the time at which the predicted survival equals exp(-1).
    """
    X = design_frame(newdata, preprocessor)
    predicted = np.asarray(model.predict_percentile(X, p=np.exp(-1)), dtype=float)
    return pd.Series(predicted, index=newdata.index, name='predicted_time')


# --- Evaluation ---

def evaluate_survival_model(model, X_test: pd.DataFrame, y_test_duration, y_test_event,
                            duration_col: str, event_col: str) -> Dict:
    """
    Evaluate a fitted Cox or parametric model on held-out data.

    Args:
        model: A fitted CoxPHFitter or parametric regression fitter.
        X_test (pd.DataFrame): Processed test features.
        y_test_duration (pd.Series): Test durations.
        y_test_event (pd.Series): Test event indicators.
        duration_col (str): Name of the duration column.
        event_col (str): Name of the event column.

    Returns:
        dict: log-likelihood score, concordance index and AIC.
    """
    logger.info(f"Evaluating {type(model).__name__} on {len(X_test)} test observations")
    test_df = X_test.copy()
    test_df[duration_col] = np.asarray(y_test_duration)
    test_df[event_col] = np.asarray(y_test_event)

    try:
        log_likelihood_score = model.score(test_df, scoring_method='log_likelihood')

        if isinstance(model, CoxPHFitter):
            # Higher partial hazard means shorter survival
            scores = -np.asarray(model.predict_partial_hazard(X_test), dtype=float)
            aic = model.AIC_partial_
        else:
            scores = np.asarray(model.predict_median(X_test), dtype=float).ravel()
            aic = model.AIC_

        c_index = concordance_index(np.asarray(y_test_duration), scores, np.asarray(y_test_event))
    except Exception as e:
        logger.error(f"Error during model evaluation: {e}", exc_info=True)
        raise

    metrics = {
        'log_likelihood_score': float(log_likelihood_score),
        'c_index': float(c_index),
        'aic': float(aic),
    }
    logger.info(f"Evaluation metrics: {metrics}")
    return metrics
