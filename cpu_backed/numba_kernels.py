"""
Numba-accelerated window kernel for HH batch integration.

One parallel loop iteration integrates one model over the whole window,
the way one device work-item does in the GPU kernel.
"""

import logging
from typing import Dict

import numpy as np
from numba import njit, prange

from hh_batch.kernels import ComputeKernelAdapter
from hh_batch.marshalling import PackedBatch, as_time_major
from hh_batch.models import HHConstants

logger = logging.getLogger(__name__)


# Numba-jitted gating functions, potentials relative to rest
@njit
def alpha_n(V):
    """Potassium activation rate (n gate)."""
    x = 10.0 - V
    if abs(x) < 1e-4:
        return 0.1
    return 0.01 * x / (np.exp(x / 10.0) - 1.0)


@njit
def beta_n(V):
    """Potassium activation rate (n gate)."""
    return 0.125 * np.exp(-V / 80.0)


@njit
def alpha_m(V):
    """Sodium activation rate (m gate)."""
    x = 25.0 - V
    if abs(x) < 1e-4:
        return 1.0
    return 0.1 * x / (np.exp(x / 10.0) - 1.0)


@njit
def beta_m(V):
    """Sodium activation rate (m gate)."""
    return 4.0 * np.exp(-V / 18.0)


@njit
def alpha_h(V):
    """Sodium inactivation rate (h gate)."""
    return 0.07 * np.exp(-V / 20.0)


@njit
def beta_h(V):
    """Sodium inactivation rate (h gate)."""
    return 1.0 / (np.exp((30.0 - V) / 10.0) + 1.0)


@njit
def compute_derivatives_single(V, n, m, h, I_ext, g_K, g_Na, g_L, E_K, E_Na, E_L, C_m):
    """
    Compute derivatives for a single compartment.

    Returns: (dV, dn, dm, dh)
    """
    dn = alpha_n(V) * (1.0 - n) - beta_n(V) * n
    dm = alpha_m(V) * (1.0 - m) - beta_m(V) * m
    dh = alpha_h(V) * (1.0 - h) - beta_h(V) * h

    I_K = g_K * (n ** 4) * (V - E_K)
    I_Na = g_Na * (m ** 3) * h * (V - E_Na)
    I_L = g_L * (V - E_L)

    dV = (I_ext - I_K - I_Na - I_L) / C_m

    return dV, dn, dm, dh


@njit
def rk4_step_single(V, n, m, h, I_ext, dt, g_K, g_Na, g_L, E_K, E_Na, E_L, C_m):
    """
    Single RK4 step for one compartment.

    Returns: (V_new, n_new, m_new, h_new)
    """
    dV1, dn1, dm1, dh1 = compute_derivatives_single(
        V, n, m, h, I_ext, g_K, g_Na, g_L, E_K, E_Na, E_L, C_m
    )
    dV2, dn2, dm2, dh2 = compute_derivatives_single(
        V + 0.5 * dt * dV1, n + 0.5 * dt * dn1, m + 0.5 * dt * dm1, h + 0.5 * dt * dh1,
        I_ext, g_K, g_Na, g_L, E_K, E_Na, E_L, C_m
    )
    dV3, dn3, dm3, dh3 = compute_derivatives_single(
        V + 0.5 * dt * dV2, n + 0.5 * dt * dn2, m + 0.5 * dt * dm2, h + 0.5 * dt * dh2,
        I_ext, g_K, g_Na, g_L, E_K, E_Na, E_L, C_m
    )
    dV4, dn4, dm4, dh4 = compute_derivatives_single(
        V + dt * dV3, n + dt * dn3, m + dt * dm3, h + dt * dh3,
        I_ext, g_K, g_Na, g_L, E_K, E_Na, E_L, C_m
    )

    V_new = V + (dt / 6.0) * (dV1 + 2*dV2 + 2*dV3 + dV4)
    n_new = n + (dt / 6.0) * (dn1 + 2*dn2 + 2*dn3 + dn4)
    m_new = m + (dt / 6.0) * (dm1 + 2*dm2 + 2*dm3 + dm4)
    h_new = h + (dt / 6.0) * (dh1 + 2*dh2 + 2*dh3 + dh4)

    return V_new, n_new, m_new, h_new


@njit(parallel=True)
def integrate_window_parallel(V_in, n_in, m_in, h_in, I_in, dt, n_steps,
                              g_K, g_Na, g_L, E_K, E_Na, E_L, C_m,
                              V_grid, n_grid, m_grid, h_grid):
    """
    Integrate a batch over one window, in parallel over models.

    Args:
        V_in, n_in, m_in, h_in, I_in: Input buffers (model_count,)
        dt: Time step
        n_steps: Number of steps
        g_K, g_Na, g_L, E_K, E_Na, E_L, C_m: Constants
        V_grid, n_grid, m_grid, h_grid: Time-major result views
            (n_steps, model_count), filled in place
    """
    model_count = V_in.shape[0]

    for b in prange(model_count):
        V = float(V_in[b])
        n = float(n_in[b])
        m = float(m_in[b])
        h = float(h_in[b])
        I_ext = float(I_in[b])

        for i in range(n_steps):
            V, n, m, h = rk4_step_single(V, n, m, h, I_ext, dt,
                                         g_K, g_Na, g_L, E_K, E_Na, E_L, C_m)
            V_grid[i, b] = V
            n_grid[i, b] = n
            m_grid[i, b] = m
            h_grid[i, b] = h


class NumbaKernel(ComputeKernelAdapter):
    """
    CPU kernel using parallel Numba.

    Host memory plays the role of device buffers: result arrays are
    allocated per window and handed to the caller.
    """

    name = 'numba'

    def run(self,
            constants: HHConstants,
            step_length: float,
            step_count: int,
            inputs: PackedBatch,
            model_count: int) -> Dict[str, np.ndarray]:
        """Integrate one window; see ComputeKernelAdapter.run."""
        dtype = inputs['V'].dtype
        results = {
            name: np.empty(model_count * step_count, dtype=dtype)
            for name in ('V', 'n', 'm', 'h')
        }
        grids = [as_time_major(results[name], model_count, step_count)
                 for name in ('V', 'n', 'm', 'h')]

        logger.debug(f"Numba dispatch: {model_count} models x {step_count} steps")
        integrate_window_parallel(
            inputs['V'], inputs['n'], inputs['m'], inputs['h'], inputs['I'],
            float(step_length), int(step_count),
            *(float(c) for c in constants.kernel_args(np.float64)),
            *grids
        )
        return results
