#!/usr/bin/env python3
"""Risk-limited portfolio selection with conejax.

The mean-variance problem is written as a second-order cone program by
bounding the portfolio volatility with an auxiliary variable:

    maximize    μ^T w - γ t
    subject to  1^T w = 1              (budget)
                w >= 0                 (long-only)
                ||L^T w||_2 <= t       (volatility, Σ = L L^T)

Where:
- w: portfolio weights
- μ: expected returns
- Σ: covariance matrix
- γ: volatility penalty
"""

import logging
from typing import Tuple

import jax
import jax.numpy as jnp

import conejax as cj

WEIGHTS_ID = 1
VOLATILITY_ID = 2


def generate_market_data(n_assets: int = 8, n_periods: int = 252, seed: int = 0) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Sample expected returns and a covariance matrix from a one-factor model.

    Args:
        n_assets: Number of assets.
        n_periods: Number of return observations.
        seed: Random seed.

    Returns:
        Tuple of (expected_returns, covariance_matrix).
    """
    key_beta, key_factor, key_noise = jax.random.split(jax.random.PRNGKey(seed), 3)

    betas = 0.5 + jax.random.uniform(key_beta, (n_assets,))
    factor = 0.01 * jax.random.normal(key_factor, (n_periods, 1))
    noise = 0.02 * jax.random.normal(key_noise, (n_periods, n_assets))
    returns = factor * betas + noise + 0.0005 * jnp.arange(1, n_assets + 1)

    return jnp.mean(returns, axis=0), jnp.cov(returns.T)


def build_problem(expected_returns: jnp.ndarray, covariance_matrix: jnp.ndarray, gamma: float):
    """Build the objective and constraints of the portfolio problem."""
    n = expected_returns.shape[0]
    w = cj.variable(WEIGHTS_ID, (n, 1))
    t = cj.variable(VOLATILITY_ID, (1, 1))
    L = jnp.linalg.cholesky(covariance_matrix)

    objective = cj.sum_expr(cj.mul_expr(expected_returns, w), cj.mul_expr(-gamma, t))
    constraints = [
        cj.eq_constr(cj.sum_expr(cj.sum_entries(w), cj.scalar_const(-1.0))),
        cj.leq_constr(cj.neg_expr(w)),
        cj.soc_constr(cj.vstack(t, cj.mul_expr(L.T, w))),
    ]
    return objective, constraints


def main():
    logging.basicConfig(level=logging.INFO)
    jax.config.update("jax_enable_x64", True)

    expected_returns, covariance_matrix = generate_market_data()

    for gamma in (0.01, 0.1, 1.0):
        objective, constraints = build_problem(expected_returns, covariance_matrix, gamma)
        solution = cj.solve(cj.Sense.MAXIMIZE, objective, constraints)

        weights = solution.primal[WEIGHTS_ID][:, 0]
        print(f"gamma={gamma:<5} status={solution.status}")
        print(f"  return     {float(expected_returns @ weights):.5f}")
        print(f"  volatility {float(solution.primal[VOLATILITY_ID][0, 0]):.5f}")
        print(f"  weights    {jnp.round(weights, 3)}")


if __name__ == "__main__":
    main()
