"""
Network Builder - bus mapping and admittance matrices from Line/Shunt data
"""
import numpy as np


def line_series_admittance(line):
    z_series = complex(line['r'], line['x'])
    if abs(z_series) > 1e-10:
        return 1.0 / z_series
    return complex(0, -1e6)  # Very low impedance


def is_dynamic(line):
    return bool(line.get('dynamic', False))


def build_network(system_data):
    """Build network admittance data from system data

    Lines use the pi model; a tap different from 1.0 (on the bus1 side) or
    different nominal voltages make the line a transformer. Shunt elements are
    added to the diagonal.

    Args:
        system_data: dict with full system configuration

    Returns:
        dict with:
            bus_idx_to_internal / internal_to_bus_idx: bus mappings (sorted by idx)
            n_bus: number of buses
            Ybus: full admittance matrix, used by the power flow
            Ybus_static: Ybus without the series branch of dynamic lines,
                         used by the dynamic network equations
            dynamic_lines: Line records flagged as dynamic
    """
    buses = system_data.get('Bus', [])
    lines = system_data.get('Line', [])

    bus_idx_to_internal = {}
    internal_to_bus_idx = {}
    for i, bus in enumerate(sorted(buses, key=lambda b: b['idx'])):
        if bus['idx'] in bus_idx_to_internal:
            raise ValueError(f"Duplicate bus idx {bus['idx']}")
        bus_idx_to_internal[bus['idx']] = i
        internal_to_bus_idx[i] = bus['idx']
    n_bus = len(bus_idx_to_internal)

    Ybus = np.zeros((n_bus, n_bus), dtype=complex)
    Ybus_static = np.zeros((n_bus, n_bus), dtype=complex)
    dynamic_lines = []

    for line in lines:
        for end in ('bus1', 'bus2'):
            if line[end] not in bus_idx_to_internal:
                raise ValueError(f"Line {line['idx']} connects to unknown bus {line[end]}")

        i = bus_idx_to_internal[line['bus1']]
        j = bus_idx_to_internal[line['bus2']]

        y_series = line_series_admittance(line)
        # Shunt admittance (line charging)
        y_shunt = complex(0, line.get('b', 0.0) / 2)
        tap = line.get('tap', 1.0)
        is_transformer = (line.get('Vn1', 1.0) != line.get('Vn2', 1.0)) or (abs(tap - 1.0) > 1e-6)

        if is_dynamic(line):
            if is_transformer:
                raise ValueError(f"Dynamic line {line['idx']} cannot model a transformer")
            if line['x'] <= 0.0:
                raise ValueError(f"Dynamic line {line['idx']} needs a positive series reactance")
            dynamic_lines.append(line)

        blocks = [(Ybus, True), (Ybus_static, not is_dynamic(line))]
        for Y, with_series in blocks:
            if is_transformer:
                # Tap is on bus1 side: t = tap (effective turns ratio)
                t = tap
                Y[i, i] += y_series / (t * t) + y_shunt
                Y[j, j] += y_series + y_shunt
                Y[i, j] -= y_series / t
                Y[j, i] -= y_series / t
            else:
                Y[i, i] += y_shunt
                Y[j, j] += y_shunt
                if with_series:
                    Y[i, i] += y_series
                    Y[j, j] += y_series
                    Y[i, j] -= y_series
                    Y[j, i] -= y_series

    for shunt in system_data.get('Shunt', []):
        if shunt['bus'] not in bus_idx_to_internal:
            raise ValueError(f"Shunt {shunt['idx']} connects to unknown bus {shunt['bus']}")
        i = bus_idx_to_internal[shunt['bus']]
        y = complex(shunt.get('g', 0.0), shunt.get('b', 0.0))
        Ybus[i, i] += y
        Ybus_static[i, i] += y

    return {
        'bus_idx_to_internal': bus_idx_to_internal,
        'internal_to_bus_idx': internal_to_bus_idx,
        'n_bus': n_bus,
        'Ybus': Ybus,
        'Ybus_static': Ybus_static,
        'dynamic_lines': dynamic_lines,
    }
