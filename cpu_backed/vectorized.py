"""
Vectorized NumPy window kernel.

Loops over time steps and vectorizes over the models of the batch. Useful as
a dependency-light reference for the Numba and CuPy kernels.
"""

from typing import Dict

import numpy as np

from hh_batch.kernels import ComputeKernelAdapter
from hh_batch.marshalling import PackedBatch, as_time_major
from hh_batch.models import HHConstants


# Gating variable rate functions, potentials relative to rest

def alpha_n_func(V: np.ndarray) -> np.ndarray:
    """
    Potassium activation rate (n gate).

    alpha_n = 0.01 * (10 - V) / (exp((10 - V) / 10) - 1)
    """
    x = 10.0 - V
    # Limit as x -> 0 is 0.1; guard the masked branch against 0/0
    safe = np.where(np.abs(x) < 1e-4, 1.0, x)
    return np.where(np.abs(x) < 1e-4, 0.1, 0.01 * safe / np.expm1(safe / 10.0))


def beta_n_func(V: np.ndarray) -> np.ndarray:
    """beta_n = 0.125 * exp(-V / 80)"""
    return 0.125 * np.exp(-V / 80.0)


def alpha_m_func(V: np.ndarray) -> np.ndarray:
    """
    Sodium activation rate (m gate).

    alpha_m = 0.1 * (25 - V) / (exp((25 - V) / 10) - 1)
    """
    x = 25.0 - V
    safe = np.where(np.abs(x) < 1e-4, 1.0, x)
    return np.where(np.abs(x) < 1e-4, 1.0, 0.1 * safe / np.expm1(safe / 10.0))


def beta_m_func(V: np.ndarray) -> np.ndarray:
    """beta_m = 4 * exp(-V / 18)"""
    return 4.0 * np.exp(-V / 18.0)


def alpha_h_func(V: np.ndarray) -> np.ndarray:
    """alpha_h = 0.07 * exp(-V / 20)"""
    return 0.07 * np.exp(-V / 20.0)


def beta_h_func(V: np.ndarray) -> np.ndarray:
    """beta_h = 1 / (exp((30 - V) / 10) + 1)"""
    return 1.0 / (np.exp((30.0 - V) / 10.0) + 1.0)


def derivatives(y: np.ndarray, I_ext: np.ndarray, constants: HHConstants) -> np.ndarray:
    """
    Time derivatives of the stacked state.

    Args:
        y: State array of shape (4, model_count), rows V, n, m, h
        I_ext: Stimulus current (model_count,)
        constants: Physical constants

    Returns:
        Array of derivatives with the same shape as y
    """
    V, n, m, h = y

    dn = alpha_n_func(V) * (1.0 - n) - beta_n_func(V) * n
    dm = alpha_m_func(V) * (1.0 - m) - beta_m_func(V) * m
    dh = alpha_h_func(V) * (1.0 - h) - beta_h_func(V) * h

    I_K = constants.g_K * (n ** 4) * (V - constants.E_K)
    I_Na = constants.g_Na * (m ** 3) * h * (V - constants.E_Na)
    I_L = constants.g_L * (V - constants.E_L)
    dV = (I_ext - I_K - I_Na - I_L) / constants.C_m

    return np.stack([dV, dn, dm, dh])


def rk4_step(y: np.ndarray, dt: float, I_ext: np.ndarray, constants: HHConstants) -> np.ndarray:
    """Classical RK4 step on the stacked state."""
    k1 = derivatives(y, I_ext, constants)
    k2 = derivatives(y + 0.5 * dt * k1, I_ext, constants)
    k3 = derivatives(y + 0.5 * dt * k2, I_ext, constants)
    k4 = derivatives(y + dt * k3, I_ext, constants)
    return y + (dt / 6.0) * (k1 + 2*k2 + 2*k3 + k4)


class VectorizedKernel(ComputeKernelAdapter):
    """CPU kernel vectorized over models with NumPy (float64 internally)."""

    name = 'numpy'

    def run(self,
            constants: HHConstants,
            step_length: float,
            step_count: int,
            inputs: PackedBatch,
            model_count: int) -> Dict[str, np.ndarray]:
        """Integrate one window; see ComputeKernelAdapter.run."""
        fields = ('V', 'n', 'm', 'h')
        dtype = inputs['V'].dtype

        y = np.stack([inputs[name] for name in fields]).astype(np.float64)
        I_ext = inputs['I'].astype(np.float64)

        results = {name: np.empty(model_count * step_count, dtype=dtype) for name in fields}
        grids = [as_time_major(results[name], model_count, step_count) for name in fields]

        for i in range(step_count):
            y = rk4_step(y, step_length, I_ext, constants)
            for row, grid in enumerate(grids):
                grid[i] = y[row]

        return results
