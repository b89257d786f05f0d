# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parser for topology files: services, their health checks and dependencies,
and the named operations that act on them.
"""
import logging
import os
from typing import Dict, Any, List, Mapping, Optional
import yaml
from jinja2 import TemplateSyntaxError
from pydantic import ValidationError
from ..exceptions import ConfigError
from ..MODELS.topology import Topology, ProjectDefinition
from ..MODELS.service_definition import ServiceDefinition, HealthCheck
from ..MODELS.operation_definition import OperationDefinition, StepDefinition, StepAction
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.step_translator import StepRenderer, TEMPLATE_GLOBALS
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)


class TopologyParser:
    """
    Parser for stackrun topology files.
    """
    def __init__(self, context: Optional[Mapping[str, str]] = None):
        """
        Initializes the parser with an optional variable context for interpolation.

        :param context: Variables for ${VAR} interpolation. Defaults to the process environment.
        """
        self.context = dict(os.environ) if context is None else dict(context)
        self.renderer = StepRenderer()

    def parse(self, topology_path: str) -> Topology:
        """
        Parses a topology file from a path.

        :param topology_path: Path to the topology file.
        :return: The validated topology.
        :raises ConfigError: If the file is missing, malformed, or inconsistent.
        """
        try:
            with open(topology_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read topology file {topology_path}: {e.strerror}") from e
        logger.debug("Parsing topology %s", topology_path)
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Topology:
        """
        Parses a topology from a string.

        :param content: YAML content of the topology.
        :return: The validated topology.
        :raises ConfigError: If the content is malformed or inconsistent.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Topology must be a mapping at the top level.")

        # Values are interpolated after parsing, so a variable can never add structure.
        try:
            data = self._interpolate(data)
        except KeyError as e:
            raise ConfigError(f"Interpolation failed: {e.args[0]}") from e

        project = self._parse_project(data.get('project') or {})

        services: Dict[str, ServiceDefinition] = {}
        for name, spec in self._mapping(data.get('services'), "services").items():
            services[str(name)] = self._parse_service(str(name), spec or {})

        DependencyResolver({n: s.depends_on for n, s in services.items()}, kind="service").validate()

        declared: Dict[str, OperationDefinition] = {}
        for name, spec in self._mapping(data.get('operations'), "operations").items():
            declared[str(name)] = self._parse_operation(str(name), spec or {})

        self._check_references(services, declared)
        operations = self._flatten(declared)
        for operation in operations.values():
            self._check_templates(operation)

        return Topology(project=project, services=services, operations=operations)

    def _parse_project(self, spec: Any) -> ProjectDefinition:
        """
        Parses the project section.

        :param spec: The project mapping.
        :return: A ProjectDefinition instance.
        """
        if not isinstance(spec, dict):
            raise ConfigError("'project' must be a mapping.")
        try:
            return ProjectDefinition(
                name=spec.get('name'),
                compose_files=self._to_list(spec.get('compose_files')),
                directory=spec.get('directory'),
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid project section: {e}") from e

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDefinition:
        """
        Parses a single service definition, accepting the compose shapes of each field.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDefinition instance.
        """
        if not isinstance(spec, dict):
            raise ConfigError(f"Service '{name}' must be a mapping.")

        # Environment
        environment = {}
        env_spec = spec.get('environment') or {}
        if isinstance(env_spec, list):
            for e in env_spec:
                k, _, v = str(e).partition('=')
                environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {str(k): "" if v is None else str(v) for k, v in env_spec.items()}
        else:
            raise ConfigError(f"Service '{name}': 'environment' must be a list or mapping.")

        # Ports
        ports = []
        for p in spec.get('ports') or []:
            if isinstance(p, dict):
                published = p.get('published')
                ports.append(f"{published}:{p['target']}" if published else str(p['target']))
            else:
                ports.append(str(p))

        # Dependencies
        depends_on = spec.get('depends_on') or []
        if isinstance(depends_on, dict):
            depends_on = list(depends_on.keys())

        try:
            return ServiceDefinition(
                name=name,
                image=spec.get('image') or '',
                ports=ports,
                environment=environment,
                env_file=self._to_list(spec.get('env_file')),
                health_check=self._parse_health_check(name, spec.get('healthcheck')),
                depends_on=[str(d) for d in self._to_list(depends_on)],
            )
        except (ValidationError, KeyError) as e:
            raise ConfigError(f"Invalid service '{name}': {e}") from e

    def _parse_health_check(self, name: str, spec: Any) -> Optional[HealthCheck]:
        """
        Parses a compose healthcheck block.

        :param name: The owning service, for error messages.
        :param spec: The healthcheck mapping, or None.
        :return: A HealthCheck instance, or None when not declared.
        """
        if spec is None:
            return None
        if not isinstance(spec, dict):
            raise ConfigError(f"Service '{name}': 'healthcheck' must be a mapping.")
        if spec.get('disable'):
            return HealthCheck(test=["NONE"])
        fields = {k: spec[k] for k in ('test', 'interval', 'timeout', 'retries', 'start_period') if k in spec}
        return HealthCheck(**fields)

    def _parse_operation(self, name: str, spec: Dict[str, Any]) -> OperationDefinition:
        """
        Parses a single operation definition.

        :param name: The name of the operation.
        :param spec: The operation specification dictionary.
        :return: An OperationDefinition instance, not yet flattened.
        """
        if not isinstance(spec, dict):
            raise ConfigError(f"Operation '{name}' must be a mapping.")

        params = spec.get('params') or {}
        if isinstance(params, list):
            params = {str(p): None for p in params}
        elif isinstance(params, dict):
            params = {str(k): None if v is None else str(v) for k, v in params.items()}
        else:
            raise ConfigError(f"Operation '{name}': 'params' must be a list or mapping.")
        reserved = set(params) & set(TEMPLATE_GLOBALS)
        if reserved:
            raise ConfigError(
                f"Operation '{name}': param name(s) {', '.join(sorted(reserved))} are reserved."
            )

        steps = []
        for index, step in enumerate(spec.get('steps') or []):
            if not isinstance(step, dict):
                raise ConfigError(f"Operation '{name}', step {index}: must be a mapping.")
            try:
                steps.append(StepDefinition(**step))
            except ValidationError as e:
                raise ConfigError(f"Operation '{name}', step {index}: {e}") from e

        if not steps:
            raise ConfigError(f"Operation '{name}' declares no steps.")

        try:
            return OperationDefinition(
                name=name,
                description=spec.get('description') or '',
                params=params,
                requires=[str(r) for r in self._to_list(spec.get('requires'))],
                steps=steps,
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid operation '{name}': {e}") from e

    def _check_references(self,
                          services: Dict[str, ServiceDefinition],
                          operations: Dict[str, OperationDefinition]):
        """
        Checks that every service and operation named by an operation is declared.
        """
        for name, operation in operations.items():
            for required in operation.requires:
                if required not in services:
                    raise ConfigError(f"Operation '{name}' requires undeclared service '{required}'.")
            for index, step in enumerate(operation.steps):
                if step.service and step.service not in services:
                    raise ConfigError(
                        f"Operation '{name}', step {index}: undeclared service '{step.service}'."
                    )
                if step.action == StepAction.INVOKE and step.operation not in operations:
                    raise ConfigError(
                        f"Operation '{name}', step {index}: undeclared operation '{step.operation}'."
                    )

    def _flatten(self, operations: Dict[str, OperationDefinition]) -> Dict[str, OperationDefinition]:
        """
        Inlines ``invoke`` steps and turns ``requires`` into leading ``wait`` steps.

        An invoked operation's params are added to the caller's unless the
        caller already declares them.

        :param operations: Operations as declared.
        :return: Flattened operations, in declaration order.
        """
        graph = {
            name: [s.operation for s in op.steps if s.action == StepAction.INVOKE]
            for name, op in operations.items()
        }
        order = DependencyResolver(graph, kind="operation").resolve_order()

        flat: Dict[str, OperationDefinition] = {}
        for name in order:
            operation = operations[name]
            params = dict(operation.params)
            steps: List[StepDefinition] = [
                StepDefinition(action=StepAction.WAIT, service=s) for s in operation.requires
            ]
            for step in operation.steps:
                if step.action == StepAction.INVOKE:
                    invoked = flat[step.operation]
                    steps.extend(invoked.steps)
                    for param, default in invoked.params.items():
                        params.setdefault(param, default)
                else:
                    steps.append(step)
            flat[name] = operation.model_copy(update={'params': params, 'steps': steps})

        return {name: flat[name] for name in operations}

    def _check_templates(self, operation: OperationDefinition):
        """
        Checks that step templates only use the operation's params, ``now`` and ``env``.
        """
        for param, default in operation.params.items():
            if default:
                self._check_template(
                    default, set(TEMPLATE_GLOBALS), f"Operation '{operation.name}', param '{param}'"
                )

        allowed = set(operation.params) | set(TEMPLATE_GLOBALS)
        for index, step in enumerate(operation.steps):
            for text in [*step.command, step.stdin, step.stdout]:
                if text:
                    self._check_template(text, allowed, f"Operation '{operation.name}', step {index}")

    def _check_template(self, text: str, allowed: set, where: str):
        try:
            unknown = self.renderer.variables(text) - allowed
        except TemplateSyntaxError as e:
            raise ConfigError(f"{where}: bad template {text!r}: {e.message}") from e
        if unknown:
            raise ConfigError(f"{where}: undeclared template variable(s) {', '.join(sorted(unknown))}.")

    def _interpolate(self, value: Any) -> Any:
        """
        Interpolates ${VAR} references in every string value, keys excluded.
        """
        if isinstance(value, str):
            return EnvironmentInterpolator.interpolate(value, self.context)
        if isinstance(value, dict):
            return {k: self._interpolate(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._interpolate(v) for v in value]
        return value

    def _mapping(self, value: Any, section: str) -> Dict[Any, Any]:
        """
        Helper to ensure a section is a mapping.
        """
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ConfigError(f"'{section}' must be a mapping.")
        return value

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return [val]
        return list(val)
