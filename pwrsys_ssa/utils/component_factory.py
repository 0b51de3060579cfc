"""Component Factory - builds and initializes devices from the model registry"""
import importlib

# Closed set of supported models: model_name -> {category, module}.
# Order matters: dynamic injectors are laid out in the global state vector
# in registry order, then in data order.
MODEL_REGISTRY = {
    # Static injection
    'Source': {'category': 'grid', 'module': 'source'},

    # Dynamic injection models of Slack/PV records
    'GENCLS': {'category': 'generator', 'module': 'gencls'},
    'ONEDONEQ': {'category': 'generator', 'module': 'onedoneq'},
    'GENROU': {'category': 'generator', 'module': 'genrou'},
    'PVSOURCE': {'category': 'grid', 'module': 'periodic_source'},
    'DERA': {'category': 'renewable', 'module': 'dera'},

    # Dynamic models of PQ loads
    'SCIM': {'category': 'motor', 'module': 'scim'},
    'SSCIM': {'category': 'motor', 'module': 'sscim'},

    # Branches
    'DynamicLine': {'category': 'branch', 'module': 'dynamic_line'},
}

CATEGORY_PACKAGES = {
    'generator': 'generators',
    'grid': 'grid',
    'renewable': 'renewables',
    'motor': 'motors',
    'branch': 'network',
}

STATIC_INJECTION_MODELS = ('Source',)
GENERATION_MODELS = ('GENCLS', 'ONEDONEQ', 'GENROU', 'PVSOURCE', 'DERA')
LOAD_MODELS = ('SCIM', 'SSCIM')


class ComponentFactory:
    """Factory for creating power system components from system data

    The registry maps model names to their implementation module. Each module
    provides build_<module>_core(data, S_system) and initialize_<module>(core, static).
    """

    def _module(self, model_name):
        model_info = MODEL_REGISTRY.get(model_name)
        if not model_info:
            raise ValueError(f"Unknown model: {model_name}")
        package = CATEGORY_PACKAGES[model_info['category']]
        module = importlib.import_module(
            f"pwrsys_ssa.components.{package}.{model_info['module']}")
        return module, model_info['module']

    def build(self, model_name, data, S_system=100.0):
        """Build a device core

        Args:
            model_name: str, e.g., 'GENROU'
            data: dict with parameters
            S_system: system base power

        Returns:
            core, metadata
        """
        module, module_name = self._module(model_name)
        build_func = getattr(module, f'build_{module_name}_core')
        core, metadata = build_func(data, S_system)
        core.name = str(data['idx'])
        return core, metadata

    def initialize_device(self, core, static):
        """Run the initializer of the device's model.

        Args:
            core: DeviceCore built by this factory
            static: dict with the power-flow data at the device terminal
                    (P0, Q0, Vm, theta; Vm/theta of both ends for branches)

        Returns:
            InitResult
        """
        module, module_name = self._module(core.model_name)
        init_func = getattr(module, f'initialize_{module_name}')
        return init_func(core, static)
