"""
Small-signal analysis of an initialized operating point.

The Jacobian of the DAE is reduced onto the differential states and its
eigen-decomposition gives the modes of the linearized system.
"""
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import linalg

from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.jacobian import (
    calculate_jacobian, make_reduced_jacobian_index, reduce_jacobian)


@dataclass(frozen=True)
class SmallSignalOutput:
    reduced_jacobian: np.ndarray
    eigenvalues: np.ndarray
    eigenvectors: np.ndarray
    index: dict
    stable: bool
    operating_point: np.ndarray
    damping: dict
    participation_factors: dict


def _determine_stability(eigenvalues):
    """True when no eigenvalue has a positive real part"""
    return bool(np.all(np.real(eigenvalues) <= 0.0))


def _get_eigenvalues(reduced_jacobian, multimachine):
    eigenvalues, eigenvectors = linalg.eig(reduced_jacobian)
    # ascending by real part, then imaginary part
    order = np.lexsort((eigenvalues.imag, eigenvalues.real))
    eigenvalues = eigenvalues[order]
    eigenvectors = eigenvectors[:, order]
    if multimachine:
        logger.warning(
            "No Infinite Bus found. Confirm stability directly checking eigenvalues.\n"
            "If all eigenvalues are on the left-half plane and only one eigenvalue is zero, "
            "the system is small signal stable.")
        logger.debug("Eigenvalues: %s", eigenvalues)
    return eigenvalues, eigenvectors


def _damping_ratio(eigenvalue):
    magnitude = abs(eigenvalue)
    if magnitude == 0.0:
        return 0.0
    return float(-eigenvalue.real / magnitude)


def _get_damping(eigenvalues, jac_index):
    return {
        device: {state: _damping_ratio(eigenvalues[ix]) for state, ix in states.items()}
        for device, states in jac_index.items()
    }


def participation_matrix(eigenvectors):
    """
    Normalized participation of each state in each mode.

    Entry (i, j) is |L_ij| |R_ji| / sum_k |L_ik| |R_ki| with L = R^-1, so the
    participation of all states in one mode sums to 1.
    """
    left = np.abs(linalg.inv(eigenvectors))
    right = np.abs(eigenvectors)
    weights = left * right.T
    return weights / weights.sum(axis=1, keepdims=True)


def _get_participation_factors(eigenvectors, jac_index):
    P = participation_matrix(eigenvectors)
    return {
        device: {state: P[:, ix].copy() for state, ix in states.items()}
        for device, states in jac_index.items()
    }


def small_signal_analysis(model, system_model, index, x_eval, multimachine):
    """
    Linearize the system at x_eval and compute its modes.

    Args:
        model: SimulationModel used to evaluate the Jacobian
        system_model: SystemModel with the system equations
        index: GlobalStateIndex of the state vector
        x_eval: operating point
        multimachine: True when the system has no Source reference

    Returns:
        SmallSignalOutput
    """
    x_eval = np.asarray(x_eval, dtype=float)
    jacobian = calculate_jacobian(model, system_model, x_eval)
    jac_index = make_reduced_jacobian_index(index.global_index, index.diff_states)
    reduced = reduce_jacobian(jacobian, index.diff_states, index.mass_diag, index)
    eigenvalues, eigenvectors = _get_eigenvalues(reduced, multimachine)
    return SmallSignalOutput(
        reduced_jacobian=reduced,
        eigenvalues=eigenvalues,
        eigenvectors=eigenvectors,
        index=jac_index,
        stable=_determine_stability(eigenvalues),
        operating_point=x_eval.copy(),
        damping=_get_damping(eigenvalues, jac_index),
        participation_factors=_get_participation_factors(eigenvectors, jac_index),
    )


def _state_labels(jac_index):
    labels = {}
    for device, states in jac_index.items():
        for state, ix in states.items():
            labels[ix] = f"{device} {state}"
    return [labels[ix] for ix in sorted(labels)]


def summary_eigenvalues(sso):
    """One row per mode with its frequency, damping and most associated state"""
    labels = _state_labels(sso.index)
    P = participation_matrix(sso.eigenvectors)
    rows = []
    for mode, eigenvalue in enumerate(sso.eigenvalues):
        rows.append({
            'mode': mode + 1,
            'most_associated': labels[int(np.argmax(P[mode]))],
            'part_factor': float(np.max(P[mode])),
            'real': float(eigenvalue.real),
            'imag': float(eigenvalue.imag),
            'damping_pct': 100.0 * _damping_ratio(eigenvalue),
            'freq_hz': abs(eigenvalue.imag) / (2 * np.pi),
        })
    return pd.DataFrame(rows).set_index('mode')


def summary_participation_factors(sso):
    """States as rows, modes as columns"""
    labels = _state_labels(sso.index)
    P = participation_matrix(sso.eigenvectors)
    columns = [f"λ_{mode + 1}" for mode in range(len(sso.eigenvalues))]
    return pd.DataFrame(P.T, index=labels, columns=columns)
