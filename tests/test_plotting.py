import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from survwrapper.model import plotting
from survwrapper.model.survival_models import fit_kaplan_meier


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def test_plot_event_distribution(lung):
    ax = plotting.plot_event_distribution(lung['time'], lung['event'], bins=20)

    assert ax.get_xlabel() == "Time"
    labels = [text.get_text() for text in ax.get_legend().get_texts()]
    assert labels == ["event", "censored"]


def test_plot_kaplan_meier_with_median_and_at_risk(lung):
    fitters = fit_kaplan_meier(lung, 'time', 'event', group_col='sex_r')

    ax = plotting.plot_kaplan_meier(fitters, at_risk=True, title="By sex")

    assert ax.get_title() == "By sex"
    assert ax.get_ylim() == (0, 1.05)


def test_plot_kaplan_meier_facets(lung):
    facets = {
        str(level): fit_kaplan_meier(sub, 'time', 'event', group_col='sex_r')
        for level, sub in lung.groupby('treatment')
    }

    fig = plotting.plot_kaplan_meier_facets(facets)

    assert len(fig.axes) == 2
    assert [ax.get_title() for ax in fig.axes] == ['aspirine', 'doliprane']
    with pytest.raises(ValueError):
        plotting.plot_kaplan_meier_facets({})


def test_plot_survival_curves():
    curves = pd.DataFrame({'50 year-old': [1.0, 0.8, 0.6], '75 year-old': [1.0, 0.7, 0.4]}, index=[0, 100, 200])

    ax = plotting.plot_survival_curves(curves, legend_title="age", step=False)

    assert len(ax.get_lines()) == 2
    assert ax.get_legend().get_title().get_text() == "age"


def test_plot_parametric_vs_km(lung):
    fitters = fit_kaplan_meier(lung, 'time', 'event', group_col='sex_r')
    quantiles = pd.DataFrame({'Female': [50.0, 300.0, 900.0], 'Male': [40.0, 200.0, 600.0]},
                             index=[0.9, 0.5, 0.1])

    ax = plotting.plot_parametric_vs_km(fitters, quantiles)

    assert ax.get_ylabel() == "Proportion event-free"


def test_plot_observed_vs_predicted():
    ax = plotting.plot_observed_vs_predicted([100, 200, 300], [120, 180, np.nan])

    assert ax.get_xlabel() == "Observed survival"


def test_plot_correlation_matrix(biomarkers):
    corr = biomarkers[['bm_01', 'bm_02', 'bm_03']].corr()

    ax = plotting.plot_correlation_matrix(corr)

    assert ax.get_title() == "Correlation matrix"


def test_plot_cv_results():
    summary = pd.DataFrame({
        'eta': [0.2, 0.5, 0.2, 0.5],
        'ncomp': [1, 1, 2, 2],
        'mean_iauc': [0.6, 0.65, 0.62, 0.61],
        'se_iauc': [0.02, 0.02, 0.03, 0.03],
    })

    ax = plotting.plot_cv_results(summary)

    labels = [text.get_text() for text in ax.get_legend().get_texts()]
    assert labels == ['ncomp=1', 'ncomp=2']


def test_plot_coefficients():
    coefficients = pd.Series({'bm_01': 0.8, 'bm_02': 0.0, 'bm_05': -0.5})

    ax = plotting.plot_coefficients(coefficients)
    ax.figure.canvas.draw()

    assert [tick.get_text() for tick in ax.get_yticklabels()] == ['bm_05', 'bm_01']
    with pytest.raises(ValueError):
        plotting.plot_coefficients(pd.Series({'bm_01': 0.0}))
