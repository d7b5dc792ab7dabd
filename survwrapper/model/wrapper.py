"""
Workflow wrappers for the survival and sPLS-Cox analyses.

Each wrapper takes a configuration (YAML path, URL or dictionary), loads and
prepares the data it describes and exposes one method per analysis step,
keeping the fitted models as state so later steps can reuse them.
"""

import os
import pickle
import logging
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .dataloader import (
    resolve_configuration,
    load_csv_data,
    prepare_data,
    split_time_to_event_data,
    generate_mock_lung_data,
    generate_mock_biomarker_data,
)
from .descriptive import censoring_table, format_surv, descriptive_table, correlation_matrix
from .survival_models import (
    fit_kaplan_meier,
    kaplan_meier_summary,
    survival_table,
    compare_groups,
    fit_null_hazard_model,
    null_model_survival,
    fit_cox,
    hazard_ratio_table,
    check_proportional_hazards,
    predict_cox_survival,
    adjusted_survival_curves,
    fit_weibull,
    aft_coefficient_table,
    weibull_quantile_curve,
    predict_weibull_time,
    evaluate_survival_model,
    design_frame,
)
from .spls_cox import SPLSCox, survival_outcome
from .cross_validation import tune_eta
from .comparison import compare_cox_models

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

__version__ = '0.1.0'


class _BaseWrapper:
    """Configuration handling, data loading and persistence shared by the wrappers."""

    _state_attributes: List[str] = []

    @classmethod
    def from_pickle(cls, filepath: str):
        """
        Load a wrapper instance from a pickle file.

        Raises:
            FileNotFoundError: If the pickle file doesn't exist
            ValueError: If the pickle file wasn't written by this wrapper class
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Pickle file not found: {filepath}")

        try:
            with open(filepath, 'rb') as f:
                saved_data = pickle.load(f)

            if not isinstance(saved_data, dict) or saved_data.get('wrapper') != cls.__name__:
                raise ValueError(f"Pickle file does not contain a {cls.__name__}")

            instance = cls(saved_data['config'])
            for name in cls._state_attributes:
                setattr(instance, name, saved_data.get(name))
            instance.config_source = saved_data.get('config_source', 'loaded_from_pickle')

            logger.info(f"{cls.__name__} loaded from {filepath} (version {saved_data.get('version', 'unknown')})")
            return instance

        except Exception as e:
            logger.error(f"Failed to load {cls.__name__} from {filepath}: {e}")
            raise

    def __init__(self, config: Union[str, Dict]):
        """
        Args:
            config: Either:
                - Path to a local YAML config file (str)
                - URL to a YAML config file (str starting with http:// or https://)
                - Config dictionary (dict)
        """
        self.config, self.config_source = resolve_configuration(config)
        self.data = None

        io_columns = self.config.get('model_io_columns', {})
        self.duration_col = io_columns.get('duration_col', 'time')
        self.event_col = io_columns.get('event_col', 'event')

        logger.info(f"{type(self).__name__} configuration loaded from {self.config_source}")

    def _mock_data(self, n_patients: int, **kwargs) -> pd.DataFrame:
        raise NotImplementedError

    def load_data(self, use_mock: bool = False, n_patients: Optional[int] = None, **mock_kwargs):
        """
        Load and prepare data according to the configuration.

        Args:
            use_mock: Generate a synthetic cohort instead of reading ``data.path``.
            n_patients: Size of the synthetic cohort.
            **mock_kwargs: Extra arguments for the synthetic cohort generator.
        """
        if use_mock:
            logger.info("Generating mock data...")
            raw = self._mock_data(n_patients, **mock_kwargs)
        else:
            data_config = self.config.get('data') or {}
            path = data_config.get('path')
            if not path:
                raise ValueError("Configuration has no data.path; pass use_mock=True for synthetic data")
            raw = load_csv_data(path, **(data_config.get('read_csv') or {}))

        return self.set_data(raw)

    def set_data(self, raw: pd.DataFrame):
        """Apply the configured derivations and filters to ``raw`` and keep the result."""
        self.data = prepare_data(raw, self.config)
        missing = [c for c in (self.duration_col, self.event_col) if c not in self.data.columns]
        if missing:
            raise ValueError(f"Outcome columns missing after preparation: {missing}")

        logger.info(f"Data prepared: {self.data.shape[0]} rows, {self.data.shape[1]} columns, "
                    f"{int(self.data[self.event_col].sum())} events")
        return True

    def _require_data(self):
        if self.data is None:
            raise RuntimeError("No data loaded. Call load_data() first.")

    def save_pickle(self, filepath: str):
        """Save the configuration and fitted state (not the raw data) to a pickle file."""
        save_data = {name: getattr(self, name) for name in self._state_attributes}
        save_data.update({
            'wrapper': type(self).__name__,
            'config': self.config,
            'config_source': self.config_source,
            'version': __version__,
        })

        with open(filepath, 'wb') as f:
            pickle.dump(save_data, f)
        logger.info(f"{type(self).__name__} saved to {filepath}")


class SurvivalModelWrapper(_BaseWrapper):
    """
    Kaplan-Meier, Cox and Weibull analysis of a right-censored cohort.

    Configuration keys used (besides data/derivations): ``survival.group_col``,
    ``survival.facet_col``, ``survival.cox_covariates``,
    ``survival.weibull_covariates``, ``survival.prediction_covariates``,
    ``survival.categorical``, ``survival.new_individuals``,
    ``survival.alpha``, ``survival.status_col``.
    """

    _state_attributes = ['km_fitters', 'cox_models', 'weibull_model', 'trained_model',
                         'training_stats', 'test_predictions']

    def __init__(self, config: Union[str, Dict]):
        super().__init__(config)
        self.settings = self.config.get('survival') or {}
        self.alpha = float(self.settings.get('alpha', 0.05))
        self.group_col = self.settings.get('group_col')
        self.categorical = self.settings.get('categorical')

        self.km_fitters = {}
        self.cox_models = {}
        self.weibull_model = None
        self.trained_model = None
        self.training_stats = None
        self.test_predictions = None

    def _mock_data(self, n_patients, **kwargs):
        return generate_mock_lung_data(n_patients or 228, **kwargs)

    # --- Description ---

    def describe(self, variables: Optional[List[str]] = None) -> Dict[str, pd.DataFrame]:
        """Censoring proportions and a descriptive table stratified by the group column."""
        self._require_data()
        status_col = self.settings.get('status_col', self.event_col)
        if variables is None:
            variables = self.settings.get('describe_variables') or [
                c for c in self.data.columns if c not in (self.duration_col, self.event_col, status_col)
            ]
        return {
            'censoring': censoring_table(self.data, status_col),
            'table': descriptive_table(self.data, variables, group_col=self.group_col,
                                       categorical=self.categorical),
        }

    def surv_object(self, n: Optional[int] = None) -> List[str]:
        """Right-censored outcomes formatted as ``time`` / ``time+``."""
        self._require_data()
        data = self.data if n is None else self.data.head(n)
        return format_surv(data[self.duration_col], data[self.event_col])

    # --- Non-parametric ---

    def fit_kaplan_meier(self, by: Optional[str] = None) -> pd.DataFrame:
        """Fit Kaplan-Meier curves (overall or by ``by``) and return their summary."""
        self._require_data()
        fitters = fit_kaplan_meier(self.data, self.duration_col, self.event_col, group_col=by, alpha=self.alpha)
        self.km_fitters[by or 'All'] = fitters
        return kaplan_meier_summary(fitters)

    def fit_kaplan_meier_facets(self, by: str, facet: str) -> Dict[str, Dict]:
        """Kaplan-Meier curves by ``by`` within each level of ``facet``."""
        self._require_data()
        return {
            str(level): fit_kaplan_meier(sub, self.duration_col, self.event_col, group_col=by, alpha=self.alpha)
            for level, sub in self.data.dropna(subset=[facet]).groupby(facet)
        }

    def life_table(self, by: Optional[str] = None, times=None) -> pd.DataFrame:
        """
        Life table of the Kaplan-Meier curves fitted with ``fit_kaplan_meier(by)``.

        Indexed by (group, time); fits the curves first when needed.
        """
        key = by or 'All'
        if key not in self.km_fitters:
            self.fit_kaplan_meier(by=by)
        fitters = self.km_fitters[key]
        return pd.concat({label: survival_table(kmf, times=times) for label, kmf in fitters.items()},
                         names=['group', 'time'])

    def compare_groups(self, by: Optional[str] = None) -> Dict:
        """Log-rank test across levels of ``by`` (default: the configured group column)."""
        self._require_data()
        by = by or self.group_col
        if by is None:
            raise ValueError("No grouping column given or configured (survival.group_col)")
        return compare_groups(self.data, self.duration_col, self.event_col, by)

    def fit_null_model(self) -> pd.DataFrame:
        """Covariate-free Cox survival next to the overall Kaplan-Meier estimate."""
        self._require_data()
        if 'All' not in self.km_fitters:
            self.fit_kaplan_meier()
        kmf = self.km_fitters['All']['All']

        null_survival = null_model_survival(
            fit_null_hazard_model(self.data, self.duration_col, self.event_col)
        ).iloc[:, 0]
        km_survival = kmf.survival_function_.iloc[:, 0]
        comparison = pd.DataFrame({'kaplan_meier': km_survival, 'null_cox': null_survival.reindex(km_survival.index)})
        comparison['difference'] = comparison['null_cox'] - comparison['kaplan_meier']
        logger.info(f"Null Cox vs Kaplan-Meier: max absolute difference {comparison['difference'].abs().max():.4f}")
        return comparison

    # --- Semi-parametric ---

    def fit_cox(self, covariates: Optional[List[str]] = None, name: Optional[str] = None,
                **model_kwargs) -> pd.DataFrame:
        """Fit and store a Cox model; returns its hazard ratio table."""
        self._require_data()
        covariates = list(covariates or self.settings.get('cox_covariates') or [])
        if not covariates:
            raise ValueError("No Cox covariates given or configured (survival.cox_covariates)")
        name = name or '+'.join(covariates)

        model, preprocessor = fit_cox(self.data, self.duration_col, self.event_col, covariates,
                                      categorical=self._categorical_for(covariates), **model_kwargs)
        self.cox_models[name] = (model, preprocessor)
        return hazard_ratio_table(model, alpha=self.alpha)

    def _categorical_for(self, covariates: List[str]) -> Optional[List[str]]:
        if self.categorical is None:
            return None
        return [c for c in self.categorical if c in covariates]

    def _cox_model(self, name: Optional[str]):
        if not self.cox_models:
            raise RuntimeError("No Cox model fitted. Call fit_cox() first.")
        if name is None:
            name = list(self.cox_models)[-1]
        if name not in self.cox_models:
            raise KeyError(f"No Cox model named '{name}'. Fitted: {list(self.cox_models)}")
        return self.cox_models[name]

    def check_proportional_hazards(self, name: Optional[str] = None) -> pd.DataFrame:
        """Schoenfeld residual test for a fitted Cox model."""
        self._require_data()
        model, preprocessor = self._cox_model(name)
        covariates = list(preprocessor.feature_names_in_)
        data = self.data[covariates + [self.duration_col, self.event_col]].dropna()
        return check_proportional_hazards(model, design_frame(data, preprocessor, self.duration_col, self.event_col))

    def predict_individuals(self, newdata: Optional[pd.DataFrame] = None, name: Optional[str] = None,
                            times=None) -> pd.DataFrame:
        """
        Predicted survival curves for chosen covariate profiles.

        Without ``newdata`` the profiles come from ``survival.new_individuals``,
        e.g. ``{age: [50, 75]}`` labelled "50 year-old" and "75 year-old".
        """
        model, preprocessor = self._cox_model(name)
        if newdata is None:
            newdata = self._configured_individuals()
        return predict_cox_survival(model, preprocessor, newdata, times=times)

    def _configured_individuals(self) -> pd.DataFrame:
        profiles = self.settings.get('new_individuals')
        if not profiles:
            raise ValueError("No newdata given or configured (survival.new_individuals)")
        newdata = pd.DataFrame(profiles)
        if newdata.shape[1] == 1 and newdata.columns[0] == 'age':
            newdata.index = [f"{v:g} year-old" for v in newdata['age']]
        return newdata

    def adjusted_curves(self, variable: Optional[str] = None, name: Optional[str] = None) -> pd.DataFrame:
        """Average-method adjusted survival curves for each level of ``variable``."""
        self._require_data()
        model, preprocessor = self._cox_model(name)
        variable = variable or self.group_col
        return adjusted_survival_curves(model, preprocessor, self.data, variable)

    # --- Parametric ---

    def fit_weibull(self, covariates: Optional[List[str]] = None, **model_kwargs) -> pd.DataFrame:
        """Fit and store a Weibull AFT model; returns its coefficient table."""
        self._require_data()
        covariates = list(covariates or self.settings.get('weibull_covariates') or [])
        if not covariates:
            raise ValueError("No Weibull covariates given or configured (survival.weibull_covariates)")

        self.weibull_model = fit_weibull(self.data, self.duration_col, self.event_col, covariates,
                                         categorical=self._categorical_for(covariates), **model_kwargs)
        return aft_coefficient_table(self.weibull_model[0], alpha=self.alpha)

    def weibull_curves(self, newdata: Optional[pd.DataFrame] = None, levels=None) -> pd.DataFrame:
        """
        Weibull quantile curves, one per profile.

        Defaults to one profile per level of the single Weibull covariate.
        """
        if self.weibull_model is None:
            raise RuntimeError("No Weibull model fitted. Call fit_weibull() first.")
        model, preprocessor = self.weibull_model

        if newdata is None:
            covariates = list(preprocessor.feature_names_in_)
            if len(covariates) != 1:
                raise ValueError("newdata is required when the Weibull model has several covariates")
            levels_of = sorted(self.data[covariates[0]].dropna().unique(), key=str)
            newdata = pd.DataFrame({covariates[0]: levels_of}, index=[str(v) for v in levels_of])
        return weibull_quantile_curve(model, preprocessor, newdata, levels=levels)

    # --- Prediction ---

    def _prediction_covariates(self) -> List[str]:
        covariates = self.settings.get('prediction_covariates')
        if covariates:
            return list(covariates)
        excluded = {self.duration_col, self.event_col, self.settings.get('status_col')}
        excluded.update(self.settings.get('prediction_exclude') or [])
        return [c for c in self.data.columns if c not in excluded]

    def train(self, split: float = 0.7, random_state: int = 123, covariates: Optional[List[str]] = None,
              **model_kwargs):
        """
        Fit a Weibull model on a training sample and predict the held-out rows.

        Args:
            split: Fraction of rows used for training.
            random_state: Random seed for reproducibility.
            covariates: Predictors; defaults to ``survival.prediction_covariates``
                or every non-outcome column.
            **model_kwargs: Passed to WeibullAFTFitter (e.g. penalizer).

        Returns:
            bool: True if training successful
        """
        self._require_data()
        if not 0 < split < 1:
            raise ValueError(f"split must be between 0 and 1, got {split}")

        covariates = list(covariates or self._prediction_covariates())
        logger.info(f"Training Weibull model with {split:.1%} train split on {covariates}")

        try:
            complete = self.data[covariates + [self.duration_col, self.event_col]].dropna()
            X_train, X_test, duration_train, duration_test, event_train, event_test = split_time_to_event_data(
                complete[covariates], complete[self.duration_col], complete[self.event_col],
                test_size=1.0 - split, random_state=random_state,
            )
            train_df = X_train.assign(**{self.duration_col: duration_train, self.event_col: event_train})
            test_df = X_test.assign(**{self.duration_col: duration_test, self.event_col: event_test})

            model, preprocessor = fit_weibull(train_df, self.duration_col, self.event_col, covariates,
                                              categorical=self._categorical_for(covariates), **model_kwargs)
            self.trained_model = (model, preprocessor)

            X_test_design = design_frame(test_df, preprocessor)
            metrics = evaluate_survival_model(model, X_test_design, duration_test, event_test,
                                              self.duration_col, self.event_col)
            metrics.update({
                'model_type': 'Weibull AFT',
                'n_features': int(X_test_design.shape[1]),
                'n_train_samples': int(len(train_df)),
                'n_test_samples': int(len(test_df)),
            })
            self.training_stats = metrics

            self.test_predictions = pd.DataFrame({
                'observed': test_df[self.duration_col],
                'event': test_df[self.event_col],
                'predicted': predict_weibull_time(model, preprocessor, test_df),
            })

            logger.info("Model training completed successfully")
            logger.info(f"Training stats: {self.training_stats}")
            return True

        except Exception as e:
            logger.error(f"Training failed: {e}")
            raise

    def get_train_stats(self) -> Dict:
        """Return training statistics."""
        if self.training_stats is None:
            raise RuntimeError("No training stats available. Call train() first.")
        return self.training_stats.copy()

    def __repr__(self):
        status = []
        if self.data is not None:
            status.append(f"data_loaded({self.data.shape[0]} rows)")
        if self.cox_models:
            status.append(f"cox_models({len(self.cox_models)})")
        if self.weibull_model is not None:
            status.append("weibull_fitted")
        if self.trained_model is not None:
            status.append("model_trained")

        status_str = ", ".join(status) if status else "empty"
        return f"SurvivalModelWrapper(status={status_str})"


class SPLSCoxWrapper(_BaseWrapper):
    """
    sPLS-Cox analysis of correlated biomarkers.

    Configuration keys used: ``spls.predictors`` or ``spls.predictor_prefix``,
    ``spls.clinical_covariates``, ``spls.categorical``, ``spls.group_col``,
    ``spls.eta_grid``, ``spls.ncomp_max``, ``spls.n_folds``, ``spls.n_jobs``,
    ``spls.random_state``, ``spls.penalizer``.
    """

    _state_attributes = ['tuning', 'model', 'predictors']

    def __init__(self, config: Union[str, Dict]):
        super().__init__(config)
        self.settings = self.config.get('spls') or {}
        self.predictors = list(self.settings.get('predictors') or [])
        self.tuning = None
        self.model = None

    def _mock_data(self, n_patients, **kwargs):
        return generate_mock_biomarker_data(n_patients or 300, **kwargs)

    def set_data(self, raw: pd.DataFrame):
        super().set_data(raw)

        if not self.settings.get('predictors'):
            prefix = self.settings.get('predictor_prefix')
            if not prefix:
                raise ValueError("Configure spls.predictors or spls.predictor_prefix")
            self.predictors = [c for c in self.data.columns if str(c).startswith(prefix)]

        missing = [c for c in self.predictors if c not in self.data.columns]
        if missing:
            raise ValueError(f"Predictors not found in data: {missing}")
        if not self.predictors:
            raise ValueError("No predictors selected for sPLS-Cox")
        logger.info(f"{len(self.predictors)} sPLS-Cox predictors")
        return True

    def _complete_data(self) -> pd.DataFrame:
        self._require_data()
        return self.data.dropna(subset=self.predictors + [self.duration_col, self.event_col])

    def describe(self, variables: Optional[List[str]] = None) -> pd.DataFrame:
        """Descriptive table of the clinical covariates (by ``spls.group_col`` when set)."""
        self._require_data()
        if variables is None:
            variables = list(self.settings.get('clinical_covariates') or []) + [self.duration_col, self.event_col]
        return descriptive_table(self.data, variables, group_col=self.settings.get('group_col'),
                                 categorical=self.settings.get('categorical'))

    def correlation(self, method: str = 'pearson') -> pd.DataFrame:
        """Correlation matrix of the predictors."""
        self._require_data()
        return correlation_matrix(self.data, self.predictors, method=method)

    def tune(self, eta_grid=None, ncomp_max: Optional[int] = None, n_folds: Optional[int] = None,
             n_jobs: Optional[int] = None, random_state: Optional[int] = None) -> Dict:
        """Cross-validate the eta grid; arguments default to the ``spls`` configuration."""
        data = self._complete_data()
        y = survival_outcome(data[self.duration_col], data[self.event_col])

        self.tuning = tune_eta(
            data[self.predictors], y,
            eta_grid=eta_grid if eta_grid is not None else self.settings.get('eta_grid', np.arange(0.1, 1.0, 0.1)),
            ncomp_max=ncomp_max or self.settings.get('ncomp_max', 5),
            n_folds=n_folds or self.settings.get('n_folds', 5),
            random_state=random_state if random_state is not None else self.settings.get('random_state'),
            n_jobs=n_jobs or self.settings.get('n_jobs', 1),
            penalizer=self.settings.get('penalizer', 0.0),
        )
        return self.tuning

    def fit(self, eta: Optional[float] = None, ncomp: Optional[int] = None) -> SPLSCox:
        """Fit the final model, by default at the tuned (eta, ncomp)."""
        if eta is None or ncomp is None:
            if self.tuning is None:
                raise RuntimeError("No tuning results. Call tune() first or pass eta and ncomp.")
            eta = self.tuning['best_eta'] if eta is None else eta
            ncomp = self.tuning['best_ncomp'] if ncomp is None else ncomp

        data = self._complete_data()
        y = survival_outcome(data[self.duration_col], data[self.event_col])
        self.model = SPLSCox(n_components=int(ncomp), eta=float(eta),
                             penalizer=self.settings.get('penalizer', 0.0)).fit(data[self.predictors], y)
        return self.model

    def _require_model(self):
        if self.model is None:
            raise RuntimeError("No sPLS-Cox model fitted. Call fit() first.")

    def get_coefficients(self, nonzero_only: bool = True) -> pd.DataFrame:
        """Predictor coefficients of the fitted sPLS-Cox model."""
        self._require_model()
        return self.model.get_coefficients(nonzero_only=nonzero_only)

    def predict_risk(self, df: pd.DataFrame) -> pd.Series:
        """Log partial hazard of each row of ``df``."""
        self._require_model()
        missing = [c for c in self.predictors if c not in df.columns]
        if missing:
            raise ValueError(f"Missing required predictors: {missing}")
        return pd.Series(self.model.predict(df[self.predictors]), index=df.index, name='risk_score')

    def compare_models(self, covariate_sets: Optional[Dict[str, List[str]]] = None) -> pd.DataFrame:
        """
        Cox models on clinical covariates, selected biomarkers, both, and the sPLS components.
        """
        self._require_model()
        data = self._complete_data()
        components = self.model.transform(data[self.predictors])
        components.index = data.index
        frame = pd.concat([data, components], axis=1)

        clinical = list(self.settings.get('clinical_covariates') or [])
        selected = list(self.model.selected_features_)
        if covariate_sets is None:
            covariate_sets = {}
            if clinical:
                covariate_sets['clinical'] = clinical
            covariate_sets['spls_selected'] = selected
            if clinical:
                covariate_sets['clinical+spls_selected'] = clinical + selected
            covariate_sets['spls_components'] = list(components.columns)
            if clinical:
                covariate_sets['clinical+spls_components'] = clinical + list(components.columns)

        return compare_cox_models(frame, self.duration_col, self.event_col, covariate_sets,
                                  categorical=self.settings.get('categorical'))

    def __repr__(self):
        status = []
        if self.data is not None:
            status.append(f"data_loaded({self.data.shape[0]} rows, {len(self.predictors)} predictors)")
        if self.tuning is not None:
            status.append(f"tuned(eta={self.tuning['best_eta']}, ncomp={self.tuning['best_ncomp']})")
        if self.model is not None:
            status.append(f"fitted({len(self.model.selected_features_)} selected)")

        status_str = ", ".join(status) if status else "empty"
        return f"SPLSCoxWrapper(status={status_str})"
