"""
Power Flow Solver - steady-state operating point feeding the initialization

Solves the AC power flow equations in polar form with Newton-Raphson and
writes the solution back into the system data:
- Bus voltage magnitudes and angles (v0, a0)
- Slack active/reactive output and PV reactive output (p0, q0)
"""
import numpy as np
from numba import njit

from pwrsys_ssa.config import POWER_FLOW_MAX_ITER, POWER_FLOW_TOLERANCE
from pwrsys_ssa.logging import logger


@njit(cache=True)
def power_injections_jit(V, theta, G, B):
    """Net active and reactive power injected at every bus"""
    n = V.shape[0]
    P = np.zeros(n)
    Q = np.zeros(n)
    for i in range(n):
        for k in range(n):
            dth = theta[i] - theta[k]
            P[i] += V[i] * V[k] * (G[i, k] * np.cos(dth) + B[i, k] * np.sin(dth))
            Q[i] += V[i] * V[k] * (G[i, k] * np.sin(dth) - B[i, k] * np.cos(dth))
    return P, Q


@njit(cache=True)
def power_flow_jacobian_jit(V, theta, G, B, P, Q):
    """Full polar Jacobian [[dP/dtheta, dP/dV], [dQ/dtheta, dQ/dV]] for all buses"""
    n = V.shape[0]
    J = np.zeros((2 * n, 2 * n))
    for i in range(n):
        for k in range(n):
            if i == k:
                J[i, i] = -Q[i] - B[i, i] * V[i] ** 2
                J[i, n + i] = P[i] / V[i] + G[i, i] * V[i]
                J[n + i, i] = P[i] - G[i, i] * V[i] ** 2
                J[n + i, n + i] = Q[i] / V[i] - B[i, i] * V[i]
            else:
                dth = theta[i] - theta[k]
                c = np.cos(dth)
                s = np.sin(dth)
                J[i, k] = V[i] * V[k] * (G[i, k] * s - B[i, k] * c)
                J[i, n + k] = V[i] * (G[i, k] * c + B[i, k] * s)
                J[n + i, k] = -V[i] * V[k] * (G[i, k] * c + B[i, k] * s)
                J[n + i, n + k] = V[i] * (G[i, k] * s - B[i, k] * c)
    return J


class PowerFlowSolver:
    """
    Newton-Raphson power flow solver.

    Works with any PowerSystemBuilder: the first Slack record fixes the
    reference bus, PV records fix voltage magnitude and active power, every
    other bus is PQ. Any object with a solve(builder) -> bool method can
    replace it in the initialization pipeline.
    """

    def __init__(self, max_iter=POWER_FLOW_MAX_ITER, tol=POWER_FLOW_TOLERANCE, verbose=False):
        """
        Args:
            max_iter: maximum Newton iterations
            tol: convergence tolerance on the largest power mismatch (pu)
            verbose: Print iteration details
        """
        self.max_iter = max_iter
        self.tol = tol
        self.verbose = verbose
        self.results = None

    def _build_bus_data(self, builder):
        """Bus classification, power specification and starting point"""
        system_data = builder.system_data
        network = builder.network
        self.bus_idx_map = network['bus_idx_to_internal']
        self.internal_to_bus_idx = network['internal_to_bus_idx']
        self.n_bus = network['n_bus']

        self.V = np.ones(self.n_bus)
        self.theta = np.zeros(self.n_bus)
        self.P_spec = np.zeros(self.n_bus)
        self.Q_spec = np.zeros(self.n_bus)

        for bus in system_data.get('Bus', []):
            i = self.bus_idx_map[bus['idx']]
            self.V[i] = bus.get('v0', 1.0)
            self.theta[i] = bus.get('a0', 0.0)

        slack_list = system_data.get('Slack', [])
        if not slack_list:
            raise ValueError("Power flow needs a Slack injection")
        slack_buses = {slack['bus'] for slack in slack_list}
        if len(slack_buses) > 1:
            raise ValueError(f"Slack injections must share one bus, found {sorted(slack_buses)}")

        i_slack = self.bus_idx_map[slack_list[0]['bus']]
        self.slack_buses = np.array([i_slack], dtype=int)
        self.V[i_slack] = slack_list[0].get('v0', 1.0)
        self.theta[i_slack] = slack_list[0].get('a0', 0.0)

        pv_buses = []
        for pv in system_data.get('PV', []):
            i = self.bus_idx_map[pv['bus']]
            # Generator injection is POSITIVE (generation)
            self.P_spec[i] += pv.get('p0', 0.0)
            if i == i_slack:
                continue
            if i not in pv_buses:
                pv_buses.append(i)
                self.V[i] = pv.get('v0', 1.0)

        for pq in system_data.get('PQ', []):
            i = self.bus_idx_map[pq['bus']]
            # Loads are NEGATIVE injections
            self.P_spec[i] -= pq.get('p0', 0.0)
            self.Q_spec[i] -= pq.get('q0', 0.0)

        self.pv_buses = np.array(sorted(pv_buses), dtype=int)
        classified = set(self.pv_buses) | {i_slack}
        self.pq_buses = np.array([i for i in range(self.n_bus) if i not in classified], dtype=int)

    def solve(self, builder):
        """
        Solve AC power flow using Newton-Raphson method and write the
        solution into builder.system_data.

        Args:
            builder: PowerSystemBuilder with its network built

        Returns:
            converged (bool): True if solution converged
        """
        self._build_bus_data(builder)
        Ybus = builder.network['Ybus']
        G = np.ascontiguousarray(Ybus.real)
        B = np.ascontiguousarray(Ybus.imag)

        if self.verbose:
            print("\nSolving AC Power Flow (Newton-Raphson)...")
            print(f"  Total buses: {self.n_bus}")
            print(f"  PV buses: {len(self.pv_buses)}, PQ buses: {len(self.pq_buses)}")

        unknown_theta_buses = np.concatenate([self.pv_buses, self.pq_buses])
        unknown_V_buses = self.pq_buses
        n_theta = len(unknown_theta_buses)
        rows = np.concatenate([unknown_theta_buses, self.n_bus + unknown_V_buses])

        converged = False
        max_mismatch = np.inf
        for iteration in range(self.max_iter + 1):
            P_calc, Q_calc = power_injections_jit(self.V, self.theta, G, B)
            dP = self.P_spec[unknown_theta_buses] - P_calc[unknown_theta_buses]
            dQ = self.Q_spec[unknown_V_buses] - Q_calc[unknown_V_buses]
            mismatch = np.concatenate([dP, dQ])
            max_mismatch = np.max(np.abs(mismatch)) if mismatch.size else 0.0

            if self.verbose:
                print(f"  Iteration {iteration}: max mismatch = {max_mismatch:.6e}")
            if not np.isfinite(max_mismatch):
                break
            if max_mismatch < self.tol:
                converged = True
                break
            if iteration == self.max_iter:
                break

            J_full = power_flow_jacobian_jit(self.V, self.theta, G, B, P_calc, Q_calc)
            J = J_full[np.ix_(rows, rows)]
            try:
                dx = np.linalg.solve(J, mismatch)
            except np.linalg.LinAlgError:
                logger.warning("Power flow Jacobian is singular at iteration %d", iteration)
                break

            # Damping only when Newton steps are excessively large
            max_dx_theta = np.max(np.abs(dx[:n_theta])) if n_theta > 0 else 0.0
            max_dx_V = np.max(np.abs(dx[n_theta:])) if len(unknown_V_buses) > 0 else 0.0
            damping = 1.0
            if max_dx_theta > 1.0 or max_dx_V > 0.5:
                damping = min(1.0, 0.5 / max(max_dx_theta, 2.0 * max_dx_V))

            self.theta[unknown_theta_buses] += damping * dx[:n_theta]
            self.V[unknown_V_buses] += damping * dx[n_theta:]
            # Limit voltage magnitude for stability
            self.V = np.clip(self.V, 0.5, 1.5)

        if not converged:
            logger.warning("Power flow failed to converge (max mismatch %.3e)", max_mismatch)
            return False

        P_calc, Q_calc = power_injections_jit(self.V, self.theta, G, B)
        self.results = {'V': self.V.copy(), 'theta': self.theta.copy(), 'P': P_calc, 'Q': Q_calc}
        self.update_system_data(builder)
        if self.verbose:
            print(f"  Converged in {iteration} iterations")
        return True

    def get_results(self):
        """
        Get power flow results.

        Returns:
            dict with voltage magnitudes, angles, and net power injections
        """
        return self.results

    def update_system_data(self, builder):
        """
        Write the solution into the system data.

        The slack bus generation is shared evenly between the Slack records,
        the reactive generation of a PV bus between its PV records.
        """
        system_data = builder.system_data
        results = self.results
        load_P = np.zeros(self.n_bus)
        load_Q = np.zeros(self.n_bus)
        for pq in system_data.get('PQ', []):
            i = self.bus_idx_map[pq['bus']]
            load_P[i] += pq.get('p0', 0.0)
            load_Q[i] += pq.get('q0', 0.0)

        for bus in system_data.get('Bus', []):
            i = self.bus_idx_map[bus['idx']]
            bus['v0'] = float(results['V'][i])
            bus['a0'] = float(results['theta'][i])

        slack_list = system_data.get('Slack', [])
        pv_list = system_data.get('PV', [])
        i_slack = self.slack_buses[0]
        pv_at_slack = sum(pv.get('p0', 0.0) for pv in pv_list if self.bus_idx_map[pv['bus']] == i_slack)
        for slack in slack_list:
            i = self.bus_idx_map[slack['bus']]
            n_gen = len(slack_list) + sum(1 for pv in pv_list if self.bus_idx_map[pv['bus']] == i)
            slack['p0'] = float((results['P'][i] + load_P[i] - pv_at_slack) / len(slack_list))
            slack['q0'] = float((results['Q'][i] + load_Q[i]) / n_gen)
            slack['v0'] = float(results['V'][i])
            slack['a0'] = float(results['theta'][i])

        for pv in pv_list:
            i = self.bus_idx_map[pv['bus']]
            n_gen = sum(1 for other in pv_list if other['bus'] == pv['bus'])
            if i == i_slack:
                n_gen += len(slack_list)
            pv['q0'] = float((results['Q'][i] + load_Q[i]) / n_gen)
            pv['v0'] = float(results['V'][i])

        logger.debug("System data updated with power flow results")
