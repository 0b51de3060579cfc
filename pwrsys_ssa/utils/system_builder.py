"""System Builder - Constructs a power system from a dict or JSON configuration"""
import copy
import json
import os


from pwrsys_ssa.components.network.network_builder import build_network
from pwrsys_ssa.config import SYSTEM_BASE_POWER
from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.component_factory import (
    GENERATION_MODELS, LOAD_MODELS, STATIC_INJECTION_MODELS, ComponentFactory)


class PowerSystemBuilder:
    """Builds every device and the network data of a system description.

    The system is a dict {ModelName: [records]} (or a path to a JSON file
    holding one). Slack and PV records are power-flow injections and must each
    be modeled by exactly one Source or dynamic generation model referencing
    them through 'gen'. PQ records are loads; SCIM/SSCIM records reference
    them through 'load', the others become constant-impedance loads.
    """

    def __init__(self, system, S_system=SYSTEM_BASE_POWER):
        """
        Args:
            system: dict, or path to system configuration JSON
            S_system: system base power (MVA)
        """
        if isinstance(system, (str, os.PathLike)):
            with open(system, 'r') as f:
                self.system_data = json.load(f)
        else:
            self.system_data = copy.deepcopy(system)

        self.factory = ComponentFactory()
        self.S_system = S_system

        # Component storage
        self.sources = []      # static Source cores
        self.injectors = []    # dynamic injection cores (generation models, then motors)
        self.branches = []     # dynamic line cores
        self.network = None

        # PQ idx -> (bus idx, admittance) for loads without a dynamic model
        self.load_admittance = {}

        self._build_mappings()

    def _build_mappings(self):
        """Build internal mappings from system data and check references"""
        self.bus_idx_to_data = {}
        for bus in self.system_data.get('Bus', []):
            self.bus_idx_to_data[bus['idx']] = bus

        # Power-flow injections: Slack and PV share one idx namespace
        self.static_injections = {}
        for kind in ('Slack', 'PV'):
            for rec in self.system_data.get(kind, []):
                if rec['idx'] in self.static_injections:
                    raise ValueError(f"Duplicate Slack/PV idx {rec['idx']}")
                if rec['bus'] not in self.bus_idx_to_data:
                    raise ValueError(f"{kind} {rec['idx']} connects to unknown bus {rec['bus']}")
                self.static_injections[rec['idx']] = rec

        self.loads = {}
        for rec in self.system_data.get('PQ', []):
            if rec['idx'] in self.loads:
                raise ValueError(f"Duplicate PQ idx {rec['idx']}")
            if rec['bus'] not in self.bus_idx_to_data:
                raise ValueError(f"PQ {rec['idx']} connects to unknown bus {rec['bus']}")
            self.loads[rec['idx']] = rec

        # Each Slack/PV carries exactly one model
        self.injection_model = {}
        for model_name in STATIC_INJECTION_MODELS + GENERATION_MODELS:
            for rec in self.system_data.get(model_name, []):
                gen = rec['gen']
                if gen not in self.static_injections:
                    raise ValueError(f"{model_name} {rec['idx']} references unknown Slack/PV {gen}")
                if gen in self.injection_model:
                    raise ValueError(f"Slack/PV {gen} has more than one model")
                self.injection_model[gen] = model_name
        unmodeled = [idx for idx in self.static_injections if idx not in self.injection_model]
        if unmodeled:
            raise ValueError(f"Slack/PV injections without a model: {unmodeled}")

        self.load_model = {}
        for model_name in LOAD_MODELS:
            for rec in self.system_data.get(model_name, []):
                load = rec['load']
                if load not in self.loads:
                    raise ValueError(f"{model_name} {rec['idx']} references unknown PQ {load}")
                if load in self.load_model:
                    raise ValueError(f"PQ {load} has more than one motor model")
                self.load_model[load] = model_name

    def _bus_of(self, core):
        meta = core.metadata
        if 'gen' in meta:
            return self.static_injections[meta['gen']]['bus']
        if 'load' in meta:
            return self.loads[meta['load']]['bus']
        return meta['bus1']

    def build_all_components(self):
        """Build network data and every device core"""
        logger.debug("Building power system components...")
        self.network = build_network(self.system_data)

        for rec in self.system_data.get('Source', []):
            core, _ = self.factory.build('Source', rec, self.S_system)
            core.bus = self._bus_of(core)
            self.sources.append(core)

        for model_name in GENERATION_MODELS + LOAD_MODELS:
            data_list = self.system_data.get(model_name, [])
            if data_list:
                logger.debug("  Building %d %s devices", len(data_list), model_name)
            for rec in data_list:
                core, _ = self.factory.build(model_name, rec, self.S_system)
                core.bus = self._bus_of(core)
                self.injectors.append(core)

        for line in self.network['dynamic_lines']:
            core, _ = self.factory.build('DynamicLine', line, self.S_system)
            core.bus = line['bus1']
            self.branches.append(core)

        names = [core.name for core in self.injectors + self.branches]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Dynamic devices and lines need unique idx, repeated: {duplicates}")

        self.summary()
        return self

    def bus_voltage(self, bus_idx):
        """(Vm, theta) of a bus as stored by the power flow"""
        bus = self.bus_idx_to_data[bus_idx]
        return bus.get('v0', 1.0), bus.get('a0', 0.0)

    def get_static_data(self, core):
        """Power-flow data at the terminal of a device

        Returns:
            dict with P0, Q0 (system base; consumption for loads), Vm, theta.
            Branches get Vm/theta of both ends instead.
        """
        meta = core.metadata
        if core.component_type == 'branch':
            Vm_from, theta_from = self.bus_voltage(meta['bus1'])
            Vm_to, theta_to = self.bus_voltage(meta['bus2'])
            return {'Vm_from': Vm_from, 'theta_from': theta_from,
                    'Vm_to': Vm_to, 'theta_to': theta_to}

        if 'load' in meta:
            rec = self.loads[meta['load']]
        else:
            rec = self.static_injections[meta['gen']]
        Vm, theta = self.bus_voltage(rec['bus'])
        return {'P0': rec.get('p0', 0.0), 'Q0': rec.get('q0', 0.0), 'Vm': Vm, 'theta': theta}

    def calibrate_loads(self):
        """Constant-impedance admittance of every PQ load without a motor model,
        so that it draws p0 + j*q0 at its power-flow voltage"""
        self.load_admittance = {}
        for idx, rec in self.loads.items():
            if idx in self.load_model:
                continue
            Vm, _ = self.bus_voltage(rec['bus'])
            if Vm <= 0.0:
                raise ValueError(f"PQ {idx} sits at a bus with zero voltage")
            y = complex(rec.get('p0', 0.0), -rec.get('q0', 0.0)) / Vm ** 2
            self.load_admittance[idx] = (rec['bus'], y)

    def dynamic_admittance(self):
        """Ybus used by the dynamic network equations: static branches, shunts
        and calibrated constant-impedance loads"""
        Y = self.network['Ybus_static'].copy()
        bus_map = self.network['bus_idx_to_internal']
        for bus_idx, y in self.load_admittance.values():
            Y[bus_map[bus_idx], bus_map[bus_idx]] += y
        return Y

    def summary(self):
        logger.info(
            "System: %d buses, %d sources, %d dynamic injectors, %d dynamic lines, %d loads",
            self.network['n_bus'], len(self.sources), len(self.injectors),
            len(self.branches), len(self.loads))
        return {
            'buses': self.network['n_bus'],
            'sources': len(self.sources),
            'injectors': len(self.injectors),
            'branches': len(self.branches),
            'loads': len(self.loads),
        }
