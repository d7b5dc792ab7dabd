import os
import logging
from datetime import datetime
from typing import Dict, Optional, Union

import joblib
import matplotlib.pyplot as plt
import pandas as pd

from .wrapper import SurvivalModelWrapper, SPLSCoxWrapper
from . import plotting

logger = logging.getLogger(__name__)


# --- Helper functions for joblib saving/loading ---
def save_model_joblib(model, path):
    """
    Save a fitted model or wrapper to a file using joblib.
    """
    try:
        joblib.dump(model, path)
        logger.info(f"Model saved to {path}")
    except Exception as e:
        logger.error(f"Failed to save model: {e}")
        raise


def load_model_joblib(path):
    """
    Load a model from a file using joblib.
    """
    try:
        model = joblib.load(path)
        logger.info(f"Model loaded from {path}")
        return model
    except Exception as e:
        logger.error(f"Failed to load model: {e}")
        raise


def _output_dirs(output_dir: Optional[str], name: str):
    # Use a configurable output directory or default to current directory
    base = output_dir or os.environ.get("SURVWRAPPER_OUTPUT_DIR", ".")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = os.path.join(base, f"{name}_{timestamp}")
    figures_dir = os.path.join(run_dir, "figures")
    tables_dir = os.path.join(run_dir, "tables")
    os.makedirs(figures_dir, exist_ok=True)
    os.makedirs(tables_dir, exist_ok=True)
    return run_dir, figures_dir, tables_dir


def _save_figure(obj, path):
    fig = obj.get_figure() if hasattr(obj, "get_figure") else obj
    fig.savefig(path, dpi=120, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Figure written: {path}")


def _save_table(table: pd.DataFrame, path):
    table.to_csv(path)
    logger.info(f"Table written: {path}")


def _load(wrapper, preloaded_data_df, use_mock):
    if preloaded_data_df is not None:
        logger.info(f"Using preloaded data. Shape: {preloaded_data_df.shape}")
        wrapper.set_data(preloaded_data_df)
    else:
        wrapper.load_data(use_mock=use_mock)


# --- Survival workflow ---
def run_survival_pipeline(config: Union[str, Dict], preloaded_data_df: Optional[pd.DataFrame] = None,
                          output_dir: Optional[str] = None, use_mock: bool = False) -> Dict:
    """
    Runs the Kaplan-Meier / Cox / Weibull walkthrough end to end.

    Args:
        config: Configuration path, URL or dictionary.
        preloaded_data_df (pd.DataFrame, optional): Raw data; derivations from
            the configuration are still applied. If None, data is read from
            ``data.path`` (or generated when ``use_mock``).
        output_dir (str, optional): Where the run directory is created.
        use_mock (bool): Use a synthetic lung-like cohort.

    Returns:
        dict: the wrapper, the result tables and the output paths.
    """
    logger.info("Starting the survival analysis pipeline...")
    wrapper = SurvivalModelWrapper(config)
    settings = wrapper.settings
    _load(wrapper, preloaded_data_df, use_mock)

    run_dir, figures_dir, tables_dir = _output_dirs(output_dir, "survival")
    results = {'wrapper': wrapper, 'output_dir': run_dir}

    # Data overview
    description = wrapper.describe()
    _save_table(description['censoring'], os.path.join(tables_dir, "censoring.csv"))
    _save_table(description['table'], os.path.join(tables_dir, "descriptive.csv"))
    results.update(description)
    logger.info(f"First outcomes: {wrapper.surv_object(10)}")

    _save_figure(
        plotting.plot_event_distribution(wrapper.data[wrapper.duration_col], wrapper.data[wrapper.event_col]),
        os.path.join(figures_dir, "event_distribution.png"),
    )

    # Non-parametric
    results['km_overall'] = wrapper.fit_kaplan_meier()
    results['km_table'] = wrapper.life_table()
    _save_table(results['km_table'], os.path.join(tables_dir, "km_life_table.csv"))
    _save_figure(plotting.plot_kaplan_meier(wrapper.km_fitters['All'], at_risk=True),
                 os.path.join(figures_dir, "km_overall.png"))

    group_col = wrapper.group_col
    if group_col:
        results['km_by_group'] = wrapper.fit_kaplan_meier(by=group_col)
        results['logrank'] = wrapper.compare_groups(group_col)
        _save_table(results['km_by_group'], os.path.join(tables_dir, "km_by_group.csv"))
        _save_figure(plotting.plot_kaplan_meier(wrapper.km_fitters[group_col], at_risk=True),
                     os.path.join(figures_dir, "km_by_group.png"))

        facet_col = settings.get('facet_col')
        if facet_col:
            _save_figure(plotting.plot_kaplan_meier_facets(wrapper.fit_kaplan_meier_facets(group_col, facet_col)),
                         os.path.join(figures_dir, "km_facets.png"))

    # Semi-parametric
    results['null_model'] = wrapper.fit_null_model()
    _save_table(results['null_model'], os.path.join(tables_dir, "null_cox_vs_km.csv"))

    if settings.get('cox_covariates'):
        results['cox'] = wrapper.fit_cox(name='cox')
        _save_table(results['cox'], os.path.join(tables_dir, "cox_hazard_ratios.csv"))
        results['ph_test'] = wrapper.check_proportional_hazards('cox')
        _save_table(results['ph_test'], os.path.join(tables_dir, "cox_ph_test.csv"))
        if group_col and group_col in settings['cox_covariates']:
            curves = wrapper.adjusted_curves(group_col, name='cox')
            _save_figure(plotting.plot_survival_curves(curves, legend_title=group_col),
                         os.path.join(figures_dir, "cox_adjusted_curves.png"))

    if settings.get('new_individuals'):
        profile_covariates = list(settings['new_individuals'])
        results['cox_profiles'] = wrapper.fit_cox(profile_covariates, name='profiles')
        curves = wrapper.predict_individuals(name='profiles')
        _save_figure(plotting.plot_survival_curves(curves, legend_title=", ".join(profile_covariates)),
                     os.path.join(figures_dir, "cox_individual_curves.png"))

    # Parametric
    if settings.get('weibull_covariates'):
        results['weibull'] = wrapper.fit_weibull()
        _save_table(results['weibull'], os.path.join(tables_dir, "weibull_coefficients.csv"))
        if len(settings['weibull_covariates']) == 1 and group_col == settings['weibull_covariates'][0]:
            quantiles = wrapper.weibull_curves()
            _save_figure(plotting.plot_parametric_vs_km(wrapper.km_fitters[group_col], quantiles),
                         os.path.join(figures_dir, "weibull_vs_km.png"))

    # Prediction on held-out data
    wrapper.train(split=settings.get('train_fraction', 0.7), random_state=settings.get('random_state', 123))
    results['train_stats'] = wrapper.get_train_stats()
    _save_table(wrapper.test_predictions, os.path.join(tables_dir, "test_predictions.csv"))
    _save_figure(plotting.plot_observed_vs_predicted(wrapper.test_predictions['observed'],
                                                     wrapper.test_predictions['predicted']),
                 os.path.join(figures_dir, "observed_vs_predicted.png"))

    model_path = os.path.join(run_dir, "survival_wrapper.joblib")
    save_model_joblib(wrapper, model_path)
    results['model_path'] = model_path

    logger.info("Survival analysis pipeline completed successfully.")
    logger.info(f"Final Evaluation Metrics: {results['train_stats']}")
    return results


# --- sPLS-Cox workflow ---
def run_spls_pipeline(config: Union[str, Dict], preloaded_data_df: Optional[pd.DataFrame] = None,
                      output_dir: Optional[str] = None, use_mock: bool = False,
                      n_jobs: Optional[int] = None) -> Dict:
    """
    Runs the sPLS-Cox walkthrough end to end.

    Descriptive table, correlation plot, eta/ncomp cross-validation, final
    fit, coefficients and comparison Cox models.

    Returns:
        dict: the wrapper, the result tables and the output paths.
    """
    logger.info("Starting the sPLS-Cox pipeline...")
    wrapper = SPLSCoxWrapper(config)
    _load(wrapper, preloaded_data_df, use_mock)

    run_dir, figures_dir, tables_dir = _output_dirs(output_dir, "spls_cox")
    results = {'wrapper': wrapper, 'output_dir': run_dir}

    results['descriptive'] = wrapper.describe()
    _save_table(results['descriptive'], os.path.join(tables_dir, "descriptive.csv"))

    corr = wrapper.correlation()
    results['correlation'] = corr
    _save_table(corr, os.path.join(tables_dir, "correlation.csv"))
    _save_figure(plotting.plot_correlation_matrix(corr), os.path.join(figures_dir, "correlation.png"))

    tuning = wrapper.tune(n_jobs=n_jobs)
    results['tuning'] = tuning
    _save_table(tuning['summary'], os.path.join(tables_dir, "cv_summary.csv"))
    _save_figure(plotting.plot_cv_results(tuning['summary']), os.path.join(figures_dir, "cv_iauc.png"))

    model = wrapper.fit()
    coefficients = wrapper.get_coefficients()
    results['coefficients'] = coefficients
    _save_table(coefficients, os.path.join(tables_dir, "coefficients.csv"))
    _save_figure(plotting.plot_coefficients(model.coef_std_), os.path.join(figures_dir, "coefficients.png"))

    results['comparison'] = wrapper.compare_models()
    _save_table(results['comparison'], os.path.join(tables_dir, "model_comparison.csv"))

    model_path = os.path.join(run_dir, "spls_cox_wrapper.joblib")
    save_model_joblib(wrapper, model_path)
    results['model_path'] = model_path

    logger.info("sPLS-Cox pipeline completed successfully.")
    logger.info(f"Selected predictors: {model.selected_features_}")
    return results
