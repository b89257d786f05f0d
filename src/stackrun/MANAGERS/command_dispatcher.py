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
Command dispatch: runs a named operation's steps in order, stopping at the
first failure.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from jinja2 import TemplateError
from ..exceptions import UnknownOperationError, OperationArgumentError, StepFailure
from ..MODELS.topology import Topology
from ..MODELS.runner_settings import RunnerSettings
from ..MODELS.operation_definition import OperationDefinition, StepDefinition, StepAction
from ..RUNNERS.process_runner import ProcessRunner
from ..RUNNERS.step_translator import StepTranslator, PreparedCommand
from .health_gate import HealthGate
from .health_probe import ComposeHealthProbe

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """
    Outcome of a successful operation.
    """
    operation: str
    exit_codes: List[int] = field(default_factory=list)
    dry_run: bool = False


class CommandDispatcher:
    """
    Maps operation names to their steps and runs them one at a time.

    Each step either gates on a service's health or spawns exactly one
    external process. There are no retries; a failing step ends the
    operation and earlier steps are not rolled back.
    """
    def __init__(self,
                 topology: Topology,
                 settings: RunnerSettings,
                 runner: Optional[ProcessRunner] = None,
                 health_gate: Optional[HealthGate] = None,
                 variables: Optional[Mapping[str, str]] = None):
        """
        Initializes the dispatcher.

        :param topology: The loaded topology.
        :param settings: Runner settings.
        :param runner: Process runner; one working in ``settings.working_dir`` by default.
        :param health_gate: Gate for ``wait`` steps; polls ``docker compose ps`` by default.
        :param variables: Exposed to step templates as ``env``.
        """
        self.topology = topology
        self.settings = settings
        self.translator = StepTranslator(topology.project, settings)
        self.runner = runner or ProcessRunner(working_dir=settings.working_dir)
        self.health_gate = health_gate or HealthGate(
            topology.services, settings, ComposeHealthProbe(self.translator, self.runner)
        )
        self.variables = dict(variables or {})

    def operation(self, name: str) -> OperationDefinition:
        """
        Resolves an operation by name.

        :raises UnknownOperationError: If no such operation is declared.
        """
        try:
            return self.topology.operations[name]
        except KeyError:
            raise UnknownOperationError(name) from None

    def bind_arguments(self,
                       operation: OperationDefinition,
                       args: Sequence[str],
                       named: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Binds positional and named arguments onto an operation's params.

        :param operation: The operation.
        :param args: Positional arguments, in param declaration order.
        :param named: Arguments given by param name.
        :return: Param name to value, defaults filled in.
        :raises OperationArgumentError: On too many arguments, an unknown or
            repeated name, or a missing required one.
        """
        names = list(operation.params)
        named = dict(named or {})
        if len(args) > len(names):
            raise OperationArgumentError(
                f"Operation '{operation.name}' takes {len(names)} argument(s), got {len(args)}."
            )
        bound = dict(zip(names, args))
        for name, value in named.items():
            if name not in operation.params:
                raise OperationArgumentError(
                    f"Operation '{operation.name}' has no param '{name}'."
                )
            if name in bound:
                raise OperationArgumentError(
                    f"Operation '{operation.name}' got param '{name}' twice."
                )
            bound[name] = value
        for name in names:
            if name in bound:
                continue
            default = operation.params[name]
            if default is None:
                raise OperationArgumentError(
                    f"Operation '{operation.name}' is missing argument '{name}'."
                )
            bound[name] = default
        return bound

    def plan(self,
             name: str,
             args: Sequence[str] = (),
             params: Optional[Mapping[str, str]] = None) -> List[Tuple[StepDefinition, Optional[PreparedCommand]]]:
        """
        Resolves and renders an operation without running anything.

        :param name: The operation name.
        :param args: Positional arguments.
        :param params: Arguments given by param name.
        :return: Each step with its prepared command (None for ``wait`` steps).
        """
        operation = self.operation(name)
        context = self._context(operation, args, params)
        return [(step, self._prepare(operation, index, step, context))
                for index, step in enumerate(operation.steps)]

    def dispatch(self,
                 name: str,
                 args: Sequence[str] = (),
                 params: Optional[Mapping[str, str]] = None) -> OperationResult:
        """
        Runs an operation.

        :param name: The operation name.
        :param args: Positional arguments bound onto the operation's params.
        :param params: Arguments given by param name, e.g. from a generated Makefile.
        :return: The result, only when every step succeeded.
        :raises UnknownOperationError: Before anything runs, if the name is not declared.
        :raises OperationArgumentError: Before anything runs, if the arguments do not fit.
        :raises StepFailure: When a step exits non-zero; later steps are not run.
        :raises HealthTimeout: When a ``wait`` step times out; later steps are not run.
        """
        operation = self.operation(name)
        context = self._context(operation, args, params)
        # Render everything up front so a bad argument fails before any step runs.
        prepared_steps = [self._prepare(operation, index, step, context)
                          for index, step in enumerate(operation.steps)]
        result = OperationResult(operation=name, dry_run=self.settings.dry_run)
        total = len(operation.steps)
        logger.info("Running operation %s (%d steps)", name, total)

        for index, (step, prepared) in enumerate(zip(operation.steps, prepared_steps)):
            logger.info("[%s %d/%d] %s", name, index + 1, total, step.describe())

            if self.settings.dry_run:
                continue

            if step.action == StepAction.WAIT:
                self.health_gate.wait_healthy(step.service, step.timeout)
                continue

            exit_code = self.runner.run(prepared.argv, prepared.stdin, prepared.stdout)
            result.exit_codes.append(exit_code)
            if exit_code != 0:
                logger.error("Step %d of %s exited with %d", index, name, exit_code)
                raise StepFailure(name, index, exit_code)

        logger.info("Operation %s completed", name)
        return result

    def _context(self,
                 operation: OperationDefinition,
                 args: Sequence[str],
                 params: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        bound = self.bind_arguments(operation, args, params)
        given = set(list(operation.params)[:len(args)]) | set(params or {})
        context: Dict[str, Any] = {"now": datetime.now(), "env": self.variables}
        renderer = self.translator.renderer
        for name, value in bound.items():
            # Defaults are templates; arguments from the caller are taken literally.
            if name in given:
                context[name] = value
                continue
            try:
                context[name] = renderer.render(value, context)
            except TemplateError as e:
                raise OperationArgumentError(
                    f"Operation '{operation.name}': cannot render default of '{name}': {e}"
                ) from e
        return context

    def _prepare(self,
                 operation: OperationDefinition,
                 index: int,
                 step: StepDefinition,
                 context: Dict[str, Any]) -> Optional[PreparedCommand]:
        if step.action == StepAction.WAIT:
            return None
        try:
            return self.translator.translate(step, context)
        except TemplateError as e:
            raise OperationArgumentError(
                f"Operation '{operation.name}', step {index}: cannot render arguments: {e}"
            ) from e
