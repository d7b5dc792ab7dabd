import os

import numpy as np
import pandas as pd
import pytest
import yaml

from survwrapper import SurvivalModelWrapper, SPLSCoxWrapper
from survwrapper.model.spls_cox import SPLSCox


# --- SurvivalModelWrapper ---

@pytest.fixture
def survival_wrapper(survival_config, lung_raw):
    wrapper = SurvivalModelWrapper(survival_config)
    wrapper.set_data(lung_raw)
    return wrapper


def test_initialization_from_yaml(tmp_path, survival_config):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(survival_config))

    wrapper = SurvivalModelWrapper(str(path))

    assert wrapper.config_source == f"file: {path}"
    assert wrapper.duration_col == 'time'
    assert wrapper.group_col == 'sex_r'
    assert repr(wrapper) == "SurvivalModelWrapper(status=empty)"


def test_bundled_configuration_loads():
    import survwrapper
    path = os.path.join(os.path.dirname(survwrapper.__file__), "survival_config.yaml")

    wrapper = SurvivalModelWrapper(path)

    assert wrapper.event_col == 'event'
    assert wrapper.settings['new_individuals'] == {'age': [50, 75]}


def test_load_data_from_csv(tmp_path, survival_config, lung_raw):
    csv_path = tmp_path / "lung.csv"
    lung_raw.to_csv(csv_path, index=False)
    config = dict(survival_config, data={'path': str(csv_path)})

    wrapper = SurvivalModelWrapper(config)
    wrapper.load_data()

    assert len(wrapper.data) == len(lung_raw)
    assert {'sex_r', 'treatment', 'event'} <= set(wrapper.data.columns)


def test_load_data_mock(survival_config):
    wrapper = SurvivalModelWrapper(survival_config)

    assert wrapper.load_data(use_mock=True, n_patients=120)
    assert len(wrapper.data) == 120


def test_load_data_without_path(survival_config):
    with pytest.raises(ValueError):
        SurvivalModelWrapper(survival_config).load_data()


def test_missing_outcome_after_preparation(survival_config, lung_raw):
    config = dict(survival_config, derived_columns={})

    with pytest.raises(ValueError, match="Outcome columns"):
        SurvivalModelWrapper(config).set_data(lung_raw)


def test_steps_require_data(survival_config):
    with pytest.raises(RuntimeError):
        SurvivalModelWrapper(survival_config).fit_kaplan_meier()


def test_describe_and_surv_object(survival_wrapper):
    description = survival_wrapper.describe()

    assert set(description['censoring'].index) == {1, 2}
    assert 'sex_r=Male' in description['table'].columns
    outcomes = survival_wrapper.surv_object(5)
    assert len(outcomes) == 5
    first = survival_wrapper.data.iloc[0]
    assert outcomes[0].endswith('+') == (first['event'] == 0)


def test_kaplan_meier_and_logrank(survival_wrapper):
    overall = survival_wrapper.fit_kaplan_meier()
    by_sex = survival_wrapper.fit_kaplan_meier(by='sex_r')
    facets = survival_wrapper.fit_kaplan_meier_facets('sex_r', 'treatment')
    logrank = survival_wrapper.compare_groups()

    assert list(overall.index) == ['All']
    assert list(by_sex.index) == ['Female', 'Male']
    assert set(survival_wrapper.km_fitters) == {'All', 'sex_r'}
    assert set(facets) == {'aspirine', 'doliprane'}
    assert logrank['n_groups'] == 2


def test_null_model(survival_wrapper):
    comparison = survival_wrapper.fit_null_model()

    assert list(comparison.columns) == ['kaplan_meier', 'null_cox', 'difference']
    assert (comparison['difference'] >= -1e-12).all()


def test_cox_workflow(survival_wrapper):
    table = survival_wrapper.fit_cox(name='cox')
    ph = survival_wrapper.check_proportional_hazards('cox')
    adjusted = survival_wrapper.adjusted_curves()

    assert list(table.index) == ['sex_r_Male']
    assert 'p' in ph.columns
    assert list(adjusted.columns) == ['Female', 'Male']

    survival_wrapper.fit_cox(['age'], name='profiles')
    curves = survival_wrapper.predict_individuals(name='profiles')
    assert list(curves.columns) == ['50 year-old', '75 year-old']

    with pytest.raises(KeyError):
        survival_wrapper.check_proportional_hazards('absent')


def test_predict_individuals_requires_model(survival_wrapper):
    with pytest.raises(RuntimeError):
        survival_wrapper.predict_individuals()


def test_weibull_workflow(survival_wrapper):
    table = survival_wrapper.fit_weibull()
    curves = survival_wrapper.weibull_curves(levels=[0.9, 0.5, 0.1])

    assert 'Log(scale)' in table.index
    assert list(curves.columns) == ['Female', 'Male']
    assert list(curves.index) == [0.9, 0.5, 0.1]


def test_weibull_curves_need_model(survival_wrapper):
    with pytest.raises(RuntimeError):
        survival_wrapper.weibull_curves()


def test_train_and_stats(survival_wrapper):
    assert survival_wrapper.train(split=0.7, random_state=123)

    stats = survival_wrapper.get_train_stats()

    assert stats['model_type'] == 'Weibull AFT'
    assert stats['n_features'] == 3
    assert stats['n_train_samples'] + stats['n_test_samples'] == len(survival_wrapper.data)
    assert 0 <= stats['c_index'] <= 1
    assert list(survival_wrapper.test_predictions.columns) == ['observed', 'event', 'predicted']
    assert (survival_wrapper.test_predictions['predicted'] > 0).all()
    assert "model_trained" in repr(survival_wrapper)


def test_train_rejects_bad_split(survival_wrapper):
    with pytest.raises(ValueError):
        survival_wrapper.train(split=1.5)
    with pytest.raises(RuntimeError):
        survival_wrapper.get_train_stats()


def test_survival_pickle_round_trip(tmp_path, survival_wrapper):
    survival_wrapper.fit_kaplan_meier()
    survival_wrapper.fit_cox(name='cox')
    path = tmp_path / "survival.pkl"

    survival_wrapper.save_pickle(str(path))
    loaded = SurvivalModelWrapper.from_pickle(str(path))

    assert loaded.data is None
    assert set(loaded.cox_models) == {'cox'}
    newdata = pd.DataFrame({'sex_r': ['Male']})
    original = survival_wrapper.predict_individuals(newdata, name='cox', times=[200])
    restored = loaded.predict_individuals(newdata, name='cox', times=[200])
    assert np.allclose(original.values, restored.values)


def test_from_pickle_rejects_other_wrapper(tmp_path, spls_config):
    path = tmp_path / "spls.pkl"
    SPLSCoxWrapper(spls_config).save_pickle(str(path))

    with pytest.raises(ValueError):
        SurvivalModelWrapper.from_pickle(str(path))
    with pytest.raises(FileNotFoundError):
        SurvivalModelWrapper.from_pickle(str(tmp_path / "absent.pkl"))


# --- SPLSCoxWrapper ---

@pytest.fixture
def spls_wrapper(spls_config, biomarkers):
    wrapper = SPLSCoxWrapper(spls_config)
    wrapper.set_data(biomarkers)
    return wrapper


def test_predictors_from_prefix(spls_wrapper):
    assert spls_wrapper.predictors == [f"bm_{i:02d}" for i in range(1, 13)]
    assert "12 predictors" in repr(spls_wrapper)


def test_explicit_predictors_are_validated(spls_config, biomarkers):
    config = dict(spls_config, spls=dict(spls_config['spls'], predictors=['bm_01', 'bm_99']))

    with pytest.raises(ValueError, match="bm_99"):
        SPLSCoxWrapper(config).set_data(biomarkers)


def test_describe_and_correlation(spls_wrapper):
    table = spls_wrapper.describe()
    corr = spls_wrapper.correlation()

    assert list(table.columns) == ['Overall', 'sex=Female', 'sex=Male']
    assert ('stage', 'mean (sd)') in table.index
    assert corr.shape == (12, 12)


def test_fit_requires_tuning(spls_wrapper):
    with pytest.raises(RuntimeError):
        spls_wrapper.fit()
    with pytest.raises(RuntimeError):
        spls_wrapper.get_coefficients()


def test_spls_workflow(spls_wrapper, biomarkers):
    tuning = spls_wrapper.tune()
    model = spls_wrapper.fit()

    assert isinstance(model, SPLSCox)
    assert model.eta == tuning['best_eta']
    assert model.n_components == tuning['best_ncomp']

    coefficients = spls_wrapper.get_coefficients()
    assert set(coefficients.index) == set(model.selected_features_)

    risk = spls_wrapper.predict_risk(biomarkers.head(4))
    assert risk.name == 'risk_score' and len(risk) == 4
    with pytest.raises(ValueError):
        spls_wrapper.predict_risk(biomarkers[['age']])

    comparison = spls_wrapper.compare_models()
    assert 'spls_components' in comparison.index
    assert 'clinical' in comparison.index
    assert comparison['n'].nunique() == 1


def test_fit_with_explicit_parameters(spls_wrapper):
    model = spls_wrapper.fit(eta=0.5, ncomp=1)

    assert model.n_components_ == 1
    assert "fitted(" in repr(spls_wrapper)


def test_spls_pickle_round_trip(tmp_path, spls_wrapper, biomarkers):
    spls_wrapper.fit(eta=0.5, ncomp=2)
    path = tmp_path / "spls.pkl"

    spls_wrapper.save_pickle(str(path))
    loaded = SPLSCoxWrapper.from_pickle(str(path))

    assert loaded.predictors == spls_wrapper.predictors
    assert np.allclose(loaded.predict_risk(biomarkers), spls_wrapper.predict_risk(biomarkers))


def test_train_holds_out_the_split_rows(survival_wrapper):
    from survwrapper.model.dataloader import split_time_to_event_data

    survival_wrapper.train(split=0.7, random_state=7, covariates=['age', 'sex_r'])

    complete = survival_wrapper.data[['age', 'sex_r', 'time', 'event']].dropna()
    _, X_test, *_ = split_time_to_event_data(complete[['age', 'sex_r']], complete['time'], complete['event'],
                                             test_size=1.0 - 0.7, random_state=7)
    assert set(survival_wrapper.test_predictions.index) == set(X_test.index)
    assert survival_wrapper.get_train_stats()['n_test_samples'] == len(X_test)


def test_life_table_by_group(survival_wrapper):
    table = survival_wrapper.life_table(by='sex_r', times=[0, 365])

    assert table.index.names == ['group', 'time']
    assert set(table.index.get_level_values('group')) == {'Female', 'Male'}
    assert 'sex_r' in survival_wrapper.km_fitters
    assert (table['survival'] <= 1).all()
