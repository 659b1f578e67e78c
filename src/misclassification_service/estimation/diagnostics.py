"""
Convergence diagnostics and posterior summaries for MCMC output.
"""

import numpy as np
import pandas as pd
from numpy.typing import NDArray

SUMMARY_COLUMNS = ["parameter", "mean", "sd", "q2.5", "q97.5", "rhat", "mixed"]
DRAW_COLUMNS = ["chain", "iteration", "parameter", "value"]


def gelman_rubin(chains: NDArray[np.float64]) -> float:
    """
    Potential scale reduction factor (R-hat).

    Args:
        chains: Draws of one parameter, shape (n_chains, n_draws). Chains of
            unequal length must be truncated by the caller.

    Returns:
        R-hat, or NaN with fewer than two chains, fewer than two draws per
        chain, or zero within-chain variance.
    """
    n_chains, n_draws = chains.shape
    if n_chains < 2 or n_draws < 2:
        return float("nan")

    within = float(np.mean(np.var(chains, axis=1, ddof=1)))
    if within <= 0.0:
        return float("nan")
    between = n_draws * float(np.var(np.mean(chains, axis=1), ddof=1))

    pooled = (n_draws - 1) / n_draws * within + between / n_draws
    return float(np.sqrt(pooled / within))


def draws_to_frame(
    draws: list[NDArray[np.float64]],
    parameter_names: tuple[str, ...],
) -> pd.DataFrame:
    """
    Long table of draws.

    Args:
        draws: One (n_draws, n_parameters) array per chain, in chain order.
        parameter_names: Column names for the parameters.

    Returns:
        DataFrame with columns chain (1-based), iteration (1-based, post
        burn-in), parameter, value.
    """
    frames = []
    for chain, values in enumerate(draws, start=1):
        wide = pd.DataFrame(values, columns=list(parameter_names))
        wide.insert(0, "iteration", np.arange(1, len(wide) + 1))
        wide.insert(0, "chain", chain)
        frames.append(
            wide.melt(
                id_vars=["chain", "iteration"],
                var_name="parameter",
                value_name="value",
            )
        )
    if not frames:
        return pd.DataFrame(columns=DRAW_COLUMNS)
    return pd.concat(frames, ignore_index=True)[DRAW_COLUMNS]


def summarize_draws(
    draws: list[NDArray[np.float64]],
    parameter_names: tuple[str, ...],
    rhat_threshold: float,
) -> pd.DataFrame:
    """
    Pooled posterior summary with R-hat.

    Args:
        draws: One (n_draws, n_parameters) array per chain.
        parameter_names: Names aligned with the parameter axis.
        rhat_threshold: R-hat above this marks a parameter as not mixed.

    Returns:
        DataFrame with one row per parameter and columns parameter, mean, sd,
        q2.5, q97.5, rhat, mixed. An undefined R-hat (single chain) does not
        flag the parameter.
    """
    non_empty = [d for d in draws if len(d) > 0]
    if not non_empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    pooled = np.concatenate(non_empty, axis=0)
    min_draws = min(len(d) for d in non_empty)
    stacked = np.stack([d[:min_draws] for d in non_empty])

    rows = []
    for i, name in enumerate(parameter_names):
        values = pooled[:, i]
        rhat = gelman_rubin(stacked[:, :, i])
        rows.append(
            {
                "parameter": name,
                "mean": float(np.mean(values)),
                "sd": float(np.std(values, ddof=1)) if len(values) > 1 else float("nan"),
                "q2.5": float(np.quantile(values, 0.025)),
                "q97.5": float(np.quantile(values, 0.975)),
                "rhat": rhat,
                "mixed": not rhat > rhat_threshold,
            }
        )
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
