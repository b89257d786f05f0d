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
Translation of typed steps into argument vectors for the orchestration engine.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set
from jinja2 import Environment, StrictUndefined, meta
from ..MODELS.operation_definition import StepDefinition, StepAction
from ..MODELS.runner_settings import RunnerSettings
from ..MODELS.topology import ProjectDefinition

# Names every step template may use besides the operation's params.
TEMPLATE_GLOBALS = ("now", "env")


class StepRenderer:
    """
    Renders Jinja2 placeholders in a single argument at a time.
    """
    def __init__(self):
        self.environment = Environment(undefined=StrictUndefined, autoescape=False)

    def variables(self, text: str) -> Set[str]:
        """
        Lists the top-level names a template refers to.

        :param text: The template text.
        :return: The undeclared variable names.
        :raises jinja2.TemplateSyntaxError: If the template does not parse.
        """
        return meta.find_undeclared_variables(self.environment.parse(text))

    def render(self, text: str, context: Dict[str, Any]) -> str:
        """
        Renders one template.

        :raises jinja2.UndefinedError: If the template uses a missing name.
        """
        if "{" not in text:
            return text
        return self.environment.from_string(text).render(context)


@dataclass(frozen=True)
class PreparedCommand:
    """
    A fully rendered step, ready for the process runner.
    """
    argv: List[str]
    stdin: Optional[str] = None
    stdout: Optional[str] = None


class StepTranslator:
    """
    Builds the engine invocation for a step.

    ``exec`` and ``compose`` steps go through the compose command with the
    project's name, directory and files; ``host`` steps run as given.
    """
    def __init__(self, project: ProjectDefinition, settings: RunnerSettings):
        self.project = project
        self.settings = settings
        self.renderer = StepRenderer()

    def compose_base(self) -> List[str]:
        """
        The compose command with project-wide options.

        :return: e.g. ``["docker", "compose", "-p", "shop", "-f", "a.yml"]``.
        """
        argv = list(self.settings.compose_command)
        if self.project.name:
            argv += ["-p", self.project.name]
        if self.project.directory:
            argv += ["--project-directory", self.project.directory]
        for compose_file in self.project.compose_files:
            argv += ["-f", compose_file]
        return argv

    def translate(self, step: StepDefinition, context: Dict[str, Any]) -> PreparedCommand:
        """
        Renders a step and builds its argument vector.

        :param step: An ``exec``, ``compose`` or ``host`` step.
        :param context: Template context (params, ``now``, ``env``).
        :return: The prepared command.
        :raises ValueError: For ``wait`` and ``invoke`` steps, which spawn nothing.
        """
        command = [self.renderer.render(token, context) for token in step.command]

        if step.action == StepAction.EXEC:
            argv = self.compose_base() + ["exec"]
            if not step.interactive:
                argv.append("-T")
            argv += [step.service] + command
        elif step.action == StepAction.COMPOSE:
            argv = self.compose_base() + command
            if step.service:
                argv.append(step.service)
        elif step.action == StepAction.HOST:
            argv = command
        else:
            raise ValueError(f"'{step.action.value}' steps are not translated into commands")

        return PreparedCommand(
            argv=argv,
            stdin=self.renderer.render(step.stdin, context) if step.stdin else None,
            stdout=self.renderer.render(step.stdout, context) if step.stdout else None,
        )

    def exec_command(self, service: str, command: List[str]) -> List[str]:
        """
        Builds a non-interactive exec of a raw command in a service.
        """
        return self.compose_base() + ["exec", "-T", service] + list(command)

    def ps_command(self, service: str) -> List[str]:
        """
        Builds the status query for one service.
        """
        return self.compose_base() + ["ps", "--all", "--format", "json", service]
