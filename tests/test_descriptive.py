import numpy as np
import pytest

from survwrapper.model.descriptive import (
    censoring_table,
    format_surv,
    descriptive_table,
    correlation_matrix,
    top_correlated_pairs,
)


def test_censoring_table_percentages(lung):
    table = censoring_table(lung, 'status')

    assert set(table.index) == {1, 2}
    assert table['count'].sum() == len(lung)
    assert np.isclose(table['percent'].sum(), 100.0)


def test_format_surv_marks_censored():
    assert format_surv([306, 455, np.nan], [1, 0, 1]) == ["306", "455+", "NA"]


def test_descriptive_table_layout(lung):
    table = descriptive_table(lung, ['age', 'sex_r', 'meal_cal'], group_col='treatment')

    assert list(table.columns) == ['Overall', 'treatment=aspirine', 'treatment=doliprane']
    assert table.loc[('n', ''), 'Overall'] == str(len(lung))
    assert ('age', 'mean (sd)') in table.index
    assert ('sex_r', 'Male') in table.index
    assert ('meal_cal', 'missing') in table.index
    assert ('age', 'missing') not in table.index


def test_descriptive_table_categorical_override(lung):
    table = descriptive_table(lung, ['ph_ecog'], categorical=['ph_ecog'])

    assert ('ph_ecog', '0.0') in table.index
    assert table.loc[('ph_ecog', '0.0'), 'Overall'].endswith('%)')


def test_descriptive_table_missing_column(lung):
    with pytest.raises(KeyError):
        descriptive_table(lung, ['height'])


def test_correlation_and_top_pairs(biomarkers):
    columns = [c for c in biomarkers.columns if c.startswith('bm_')]
    corr = correlation_matrix(biomarkers, columns)

    pairs = top_correlated_pairs(corr, n=5)

    assert corr.shape == (len(columns), len(columns))
    assert len(pairs) == 5
    assert (pairs['var1'] != pairs['var2']).all()
    assert pairs['correlation'].abs().is_monotonic_decreasing


def test_correlation_rejects_non_numeric(biomarkers):
    with pytest.raises(ValueError):
        correlation_matrix(biomarkers, ['bm_01', 'sex'])
