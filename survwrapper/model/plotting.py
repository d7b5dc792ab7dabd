"""
Figures for the survival and sPLS-Cox workflows.

Every function draws on the given ``ax`` (or a new one) and returns it, so
callers decide whether to show or save.
"""

import logging
from typing import Dict, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from lifelines import KaplanMeierFitter
from lifelines.plotting import add_at_risk_counts

logger = logging.getLogger(__name__)


def _axes(ax, figsize=(8, 5)):
    if ax is None:
        _, ax = plt.subplots(figsize=figsize)
    return ax


def plot_event_distribution(time, event, bins: int = 30, censored_on_top: bool = True,
                            colors: Sequence[str] = ("grey", "lightgrey"), ax=None):
    """Stacked histogram of observed times split into events and censorings."""
    ax = _axes(ax)
    time = np.asarray(time, dtype=float)
    event = np.asarray(event).astype(bool)

    layers = [(time[event], "event"), (time[~event], "censored")]
    if not censored_on_top:
        layers.reverse()

    ax.hist([values for values, _ in layers], bins=bins, stacked=True,
            color=list(colors), label=[label for _, label in layers], edgecolor="white")
    ax.set_xlabel("Time")
    ax.set_ylabel("Number of observations")
    ax.legend(title="Status")
    return ax


def plot_kaplan_meier(fitters: Dict[str, KaplanMeierFitter], ci_show: bool = True, median_line: bool = True,
                      at_risk: bool = False, title: Optional[str] = None, ax=None):
    """
    Kaplan-Meier curves with optional confidence bands and median lines.

    ``median_line`` draws the horizontal and vertical guides at S(t) = 0.5.
    """
    ax = _axes(ax)
    for kmf in fitters.values():
        kmf.plot_survival_function(ax=ax, ci_show=ci_show, show_censors=True)

    if median_line:
        medians = [kmf.median_survival_time_ for kmf in fitters.values()]
        finite = [m for m in medians if np.isfinite(m)]
        if finite:
            ax.hlines(0.5, 0, max(finite), linestyles="dashed", colors="black", linewidth=0.8)
            ax.vlines(finite, 0, 0.5, linestyles="dashed", colors="black", linewidth=0.8)

    if at_risk:
        add_at_risk_counts(*fitters.values(), ax=ax)

    ax.set_xlabel("Time")
    ax.set_ylabel("S(t)")
    ax.set_ylim(0, 1.05)
    if title:
        ax.set_title(title)
    return ax


def plot_kaplan_meier_facets(fitters_by_facet: Dict[str, Dict[str, KaplanMeierFitter]], ci_show: bool = False,
                             sharey: bool = True):
    """One Kaplan-Meier panel per facet level; returns the Figure."""
    n_facets = len(fitters_by_facet)
    if n_facets == 0:
        raise ValueError("No facets to plot")

    fig, axes = plt.subplots(1, n_facets, figsize=(5 * n_facets, 4), sharey=sharey, squeeze=False)
    for ax, (facet, fitters) in zip(axes[0], fitters_by_facet.items()):
        plot_kaplan_meier(fitters, ci_show=ci_show, median_line=False, title=str(facet), ax=ax)
    fig.tight_layout()
    return fig


def plot_survival_curves(curves: pd.DataFrame, title: Optional[str] = None, legend_title: Optional[str] = None,
                         step: bool = True, ax=None):
    """Plot a table of curves (index time, one column per curve)."""
    ax = _axes(ax)
    for column in curves.columns:
        if step:
            ax.step(curves.index, curves[column], where="post", label=str(column))
        else:
            ax.plot(curves.index, curves[column], label=str(column))
    ax.set_xlabel("Time")
    ax.set_ylabel("S(t)")
    ax.set_ylim(0, 1.05)
    ax.legend(title=legend_title)
    if title:
        ax.set_title(title)
    return ax


def plot_parametric_vs_km(fitters: Dict[str, KaplanMeierFitter], quantile_curves: pd.DataFrame, ax=None):
    """
    Overlay parametric predictions on Kaplan-Meier curves.

    ``quantile_curves`` is indexed by survival level with one column of
    predicted times per profile.
    """
    ax = plot_kaplan_meier(fitters, ci_show=False, median_line=False, ax=ax)
    for column in quantile_curves.columns:
        ax.plot(quantile_curves[column].values, quantile_curves.index.values, color="black",
                linestyle="--", linewidth=2, label=f"Weibull {column}")
    ax.set_ylabel("Proportion event-free")
    ax.legend()
    return ax


def plot_observed_vs_predicted(observed, predicted, ax=None):
    """Scatter of observed against predicted times with the identity line."""
    ax = _axes(ax, figsize=(6, 6))
    observed = np.asarray(observed, dtype=float)
    predicted = np.asarray(predicted, dtype=float)

    ax.scatter(observed, predicted, color="black", s=15)
    upper = np.nanmax(np.concatenate([observed, predicted]))
    ax.plot([0, upper], [0, upper], color="red", alpha=0.5, linestyle="--")
    ax.set_xlabel("Observed survival")
    ax.set_ylabel("Predicted survival")
    return ax


def plot_correlation_matrix(corr: pd.DataFrame, annot: Optional[bool] = None, ax=None):
    """Heatmap of a correlation matrix (annotated when small)."""
    size = max(6, 0.3 * len(corr))
    ax = _axes(ax, figsize=(size, size))
    if annot is None:
        annot = len(corr) <= 12
    sns.heatmap(corr, vmin=-1, vmax=1, center=0, cmap="RdBu_r", square=True,
                annot=annot, fmt=".2f", cbar_kws={"shrink": 0.7}, ax=ax)
    ax.set_title("Correlation matrix")
    return ax


def plot_cv_results(summary: pd.DataFrame, ax=None):
    """Mean cross-validated iAUC (+/- one standard error) against eta, one line per ncomp."""
    ax = _axes(ax)
    for ncomp, sub in summary.groupby("ncomp"):
        sub = sub.sort_values("eta")
        ax.errorbar(sub["eta"], sub["mean_iauc"], yerr=sub["se_iauc"], marker="o", capsize=3,
                    label=f"ncomp={ncomp}")
    ax.set_xlabel("eta")
    ax.set_ylabel("Cross-validated iAUC")
    ax.legend()
    return ax


def plot_coefficients(coefficients: pd.Series, title: str = "sPLS-Cox coefficients", ax=None):
    """Horizontal bar chart of the non-zero coefficients, largest magnitude on top."""
    nonzero = coefficients[coefficients != 0]
    if nonzero.empty:
        raise ValueError("No non-zero coefficients to plot")
    nonzero = nonzero.reindex(nonzero.abs().sort_values().index)

    ax = _axes(ax, figsize=(7, max(3, 0.3 * len(nonzero))))
    colors = ["firebrick" if value > 0 else "steelblue" for value in nonzero.values]
    ax.barh(nonzero.index.astype(str), nonzero.values, color=colors)
    ax.axvline(0, color="black", linewidth=0.8)
    ax.set_xlabel("Coefficient")
    ax.set_title(title)
    return ax
