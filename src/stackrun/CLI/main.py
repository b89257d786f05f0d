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
Command Line Interface for stackrun.

Every operation declared in the topology is a subcommand; the built-in
commands below inspect the topology and the stack.
"""
import logging
import os
import shlex
from dataclasses import dataclass
from typing import Dict, Optional
import click
from click.core import ParameterSource
from ..exceptions import (
    StackrunError,
    ConfigError,
    UnknownOperationError,
    OperationArgumentError,
    StepFailure,
    HealthTimeout,
)
from ..MODELS.runner_settings import RunnerSettings
from ..MODELS.topology import Topology
from ..MODELS.operation_definition import OperationDefinition, StepAction
from ..PARSERS.topology_parser import TopologyParser
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.command_dispatcher import CommandDispatcher
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..CONVERTERS.to_makefile import MakefileConverter
from ..UTILS.duration import parse_duration

logger = logging.getLogger(__name__)

EXIT_CONFIG = 78
EXIT_USAGE = 64
EXIT_HEALTH_TIMEOUT = 124
EXIT_UNKNOWN_OPERATION = 127

_STATE_KEY = "stackrun.state"


@dataclass
class CliState:
    """
    Everything one invocation needs, built once from the global options.
    """
    topology_file: str
    topology: Topology
    settings: RunnerSettings
    variables: Dict[str, str]
    dispatcher: CommandDispatcher


def exit_code_for(error: Exception) -> int:
    """
    Maps an error to the process exit code.

    A failing step's own exit code is forwarded; a step killed by signal N
    exits with 128 + N as a shell would report it.
    """
    if isinstance(error, StepFailure):
        if error.exit_code < 0:
            return 128 - error.exit_code
        return error.exit_code if error.exit_code <= 255 else 1
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, UnknownOperationError):
        return EXIT_UNKNOWN_OPERATION
    if isinstance(error, OperationArgumentError):
        return EXIT_USAGE
    if isinstance(error, HealthTimeout):
        return EXIT_HEALTH_TIMEOUT
    return 1


def _fail(ctx: click.Context, error: Exception):
    """
    Reports an error on stderr and exits with its code.
    """
    message = error.message if isinstance(error, StackrunError) else str(error)
    click.echo(f"Error: {message}", err=True)
    ctx.exit(exit_code_for(error))


def _configure_logging(verbose: int):
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _load_state(ctx: click.Context) -> CliState:
    """
    Loads the topology and builds the dispatcher on first use.

    :raises ConfigError: If the settings or the topology are invalid.
    """
    root = ctx.find_root()
    if _STATE_KEY in root.meta:
        return root.meta[_STATE_KEY]

    params = root.params
    _configure_logging(params.get("verbose") or 0)

    # Unset while an eager --help given before --file is being processed.
    topology_file = params.get("file") or os.environ.get("STACKRUN_FILE") or "stack.yml"
    base_dir = os.path.dirname(os.path.abspath(topology_file))
    env_file = params.get("env_file")
    if env_file and root.get_parameter_source("env_file") != ParameterSource.DEFAULT:
        env_file = os.path.abspath(env_file)

    variables = EnvironmentManager(base_dir).get_context(env_file)
    settings = RunnerSettings.from_context(
        variables,
        dry_run=True if params.get("dry_run") else None,
        working_dir=base_dir,
    )
    topology = TopologyParser(variables).parse(topology_file)

    state = CliState(
        topology_file=topology_file,
        topology=topology,
        settings=settings,
        variables=variables,
        dispatcher=CommandDispatcher(topology, settings, variables=variables),
    )
    root.meta[_STATE_KEY] = state
    return state


def _state(ctx: click.Context) -> CliState:
    """
    Like :func:`_load_state`, but exits with the configuration error code on failure.
    """
    try:
        return _load_state(ctx)
    except ConfigError as e:
        _fail(ctx, e)


def _run_operation(ctx: click.Context, name: str, args, params: Optional[Dict[str, str]] = None):
    """
    Runs an operation, or prints its plan in dry-run mode.
    """
    state = _state(ctx)
    dispatcher = state.dispatcher
    try:
        if state.settings.dry_run:
            for step, prepared in dispatcher.plan(name, args, params):
                if prepared is None:
                    click.echo(f"# wait for {step.service} to become healthy")
                    continue
                line = shlex.join(prepared.argv)
                if prepared.stdin:
                    line += f" < {shlex.quote(prepared.stdin)}"
                if prepared.stdout:
                    line += f" > {shlex.quote(prepared.stdout)}"
                click.echo(line)
            return
        dispatcher.dispatch(name, args, params)
    except (StackrunError, OSError) as e:
        _fail(ctx, e)


class DurationType(click.ParamType):
    """
    Seconds as a number or a compose duration (``30s``, ``1m30s``).
    """
    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, float):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationType()


def _parse_params(ctx, param, values) -> Dict[str, str]:
    params = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", ctx=ctx, param=param)
        if name in params:
            raise click.BadParameter(f"'{name}' given twice", ctx=ctx, param=param)
        params[name] = value
    return params


def _operation_command(operation: OperationDefinition) -> click.Command:
    """
    Builds the subcommand for one operation.
    """
    usage = " ".join(
        f"[{p.upper()}]" if default is not None else p.upper()
        for p, default in operation.params.items()
    )

    @click.command(
        name=operation.name,
        help=operation.description or None,
        epilog=f"Arguments: {usage}" if usage else None,
        context_settings={"ignore_unknown_options": True},
    )
    @click.argument("args", nargs=-1, type=click.UNPROCESSED)
    @click.pass_context
    def command(ctx, args):
        _run_operation(ctx, operation.name, args)

    return command


class OperationGroup(click.Group):
    """
    A group whose subcommands are the built-ins plus the topology's operations.

    Built-in commands take precedence; ``run`` reaches a shadowed operation.
    """
    def list_commands(self, ctx):
        names = super().list_commands(ctx)
        try:
            topology = _load_state(ctx).topology
        except ConfigError as e:
            logger.debug("Listing built-in commands only: %s", e)
            return names
        return names + [n for n in topology.operations if n not in names]

    def get_command(self, ctx, cmd_name):
        command = super().get_command(ctx, cmd_name)
        if command is not None:
            return command
        operation = _state(ctx).topology.operations.get(cmd_name)
        if operation is None:
            return None
        return _operation_command(operation)

    def resolve_command(self, ctx, args):
        name = args[0] if args else ""
        if (not ctx.resilient_parsing and name and not name.startswith("-")
                and super().get_command(ctx, name) is None
                and name not in _state(ctx).topology.operations):
            _fail(ctx, UnknownOperationError(name))
        return super().resolve_command(ctx, args)


@click.group(cls=OperationGroup)
@click.option('--file', '-f', default='stack.yml', envvar='STACKRUN_FILE', show_default=True, is_eager=True,
              help='Topology file path')
@click.option('--env-file', default='.env', show_default=True, is_eager=True,
              help='Variables for ${VAR} interpolation, relative to the topology file by default')
@click.option('--dry-run', is_flag=True, default=False, help='Print commands instead of running them')
@click.option('--verbose', '-v', count=True, help='Log progress (-v) or debug output (-vv)')
@click.version_option(package_name='stackrun')
def cli(file, env_file, dry_run, verbose):
    """
    stackrun - run named operations against a multi-service stack.

    Operations declared in the topology file are available as commands.
    """


@cli.command(name='run', context_settings={"ignore_unknown_options": True})
@click.argument('operation')
@click.argument('args', nargs=-1, type=click.UNPROCESSED)
@click.option('--param', 'params', multiple=True, metavar='NAME=VALUE', callback=_parse_params,
              help='Bind a param by name; may be repeated')
@click.pass_context
def run_command(ctx, operation, args, params):
    """Run an operation by name."""
    _run_operation(ctx, operation, args, params)


@cli.command(name='list')
@click.pass_context
def list_operations(ctx):
    """List operations and what they do."""
    topology = _state(ctx).topology
    click.echo('Operations:')
    for name, operation in topology.operations.items():
        description = operation.description.splitlines()[0] if operation.description else ''
        params = " ".join(f"<{p}>" for p in operation.params)
        label = f"{name} {params}".strip()
        click.echo(f"  {label:25} {description}")


@cli.command()
@click.pass_context
def check(ctx):
    """Validate the topology file."""
    state = _state(ctx)
    topology = state.topology
    steps = sum(len(op.steps) for op in topology.operations.values())
    click.echo(
        f"{state.topology_file}: {len(topology.services)} services, "
        f"{len(topology.operations)} operations, {steps} steps. OK"
    )


@cli.command()
@click.argument('service', required=False)
@click.pass_context
def order(ctx, service):
    """Show the service start order, or what SERVICE needs started first."""
    topology = _state(ctx).topology
    resolver = DependencyResolver({n: s.depends_on for n, s in topology.services.items()})
    names = resolver.resolve_order()
    if service:
        if service not in topology.services:
            _fail(ctx, ConfigError(f"Unknown service '{service}'."))
        names = resolver.dependencies_of(service) + [service]
    for name in names:
        deps = topology.services[name].depends_on
        suffix = f"  (after {', '.join(deps)})" if deps else ''
        click.echo(f"{name}{suffix}")


@cli.command()
@click.argument('services', nargs=-1)
@click.pass_context
def health(ctx, services):
    """Show the health of services."""
    state = _state(ctx)
    gate = state.dispatcher.health_gate
    if not services:
        services = list(state.topology.services.keys())

    click.echo(f"{'SERVICE':15} {'STATUS':10}")
    click.echo("-" * 25)
    try:
        for name in services:
            click.echo(f"{name:15} {gate.poll(name).value:10}")
    except (StackrunError, OSError) as e:
        _fail(ctx, e)


@cli.command()
@click.argument('service')
@click.option('--timeout', '-t', type=DURATION, default=None,
              help='Seconds or a duration such as 90s or 1m30s (default: STACKRUN_HEALTH_TIMEOUT or 120)')
@click.pass_context
def wait(ctx, service, timeout):
    """Wait until a service reports healthy."""
    gate = _state(ctx).dispatcher.health_gate
    try:
        gate.wait_healthy(service, timeout)
    except (StackrunError, OSError) as e:
        _fail(ctx, e)
    click.echo(f"{service} is healthy.")


@cli.group()
def export():
    """Export the topology to other formats."""


@export.command()
@click.option('--out', '-o', default='Makefile', show_default=True, help='Output path')
@click.pass_context
def makefile(ctx, out):
    """Write a Makefile with one target per operation."""
    state = _state(ctx)
    converter = MakefileConverter(state.topology, topology_file=state.topology_file)
    converter.convert(out)
    click.echo(f"Makefile written to {out}")


def main():
    """
    Main entry point for the CLI.
    """
    cli()


if __name__ == '__main__':
    main()
