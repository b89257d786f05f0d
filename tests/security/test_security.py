import sys
import pytest
from stackrun.exceptions import ConfigError
from stackrun.MODELS.runner_settings import RunnerSettings
from stackrun.PARSERS.topology_parser import TopologyParser
from stackrun.RUNNERS.process_runner import ProcessRunner
from stackrun.MANAGERS.command_dispatcher import CommandDispatcher

TOPOLOGY = """
services:
  db: {image: mysql}
operations:
  echo:
    params: [value]
    steps:
      - action: host
        command: [%s, -c, "import sys; open('argv.txt', 'w').write(repr(sys.argv[1:]))", "{{ value }}"]
  restore:
    params: [file]
    steps:
      - {service: db, command: [mysql], stdin: "{{ file }}"}
""" % sys.executable


@pytest.fixture
def dispatcher(tmp_path):
    topology = TopologyParser(context={}).parse_from_string(TOPOLOGY)
    settings = RunnerSettings(working_dir=str(tmp_path))
    return CommandDispatcher(topology, settings, runner=ProcessRunner(working_dir=str(tmp_path)))


@pytest.mark.parametrize("payload", [
    "hello; touch injected.txt",
    "$(touch injected.txt)",
    "`touch injected.txt`",
    "a && touch injected.txt",
    "a | tee injected.txt",
])
def test_shell_metacharacters_stay_one_argument(dispatcher, tmp_path, payload):
    """
    Arguments reach the process as a single argv element and never pass through a shell.
    """
    dispatcher.dispatch('echo', [payload])

    assert (tmp_path / 'argv.txt').read_text() == repr([payload])
    assert not (tmp_path / 'injected.txt').exists()


def test_arguments_are_not_evaluated_as_templates(dispatcher, tmp_path):
    payload = "{{ env.__class__.__mro__ }}"
    dispatcher.dispatch('echo', [payload])
    assert (tmp_path / 'argv.txt').read_text() == repr([payload])


def test_injected_argument_is_one_token_in_compose_exec(dispatcher):
    plan = dispatcher.plan('restore', ['dump.sql; rm -rf /'])
    _, prepared = plan[0]

    assert prepared.argv == ['docker', 'compose', 'exec', '-T', 'db', 'mysql']
    assert prepared.stdin == 'dump.sql; rm -rf /'


def test_interpolated_values_cannot_add_yaml_structure():
    """
    Variables are substituted into parsed values, so they cannot add services.
    """
    value = "x'}\n  evil: {image: 'y"
    content = "services:\n  db: {image: '${IMAGE}'}\n"

    topology = TopologyParser(context={'IMAGE': value}).parse_from_string(content)

    assert list(topology.services) == ['db']
    assert topology.services['db'].image == value


def test_yaml_tags_are_not_constructed():
    content = "services: !!python/object/apply:os.system ['touch injected.txt']\n"
    with pytest.raises(ConfigError, match="Invalid YAML"):
        TopologyParser(context={}).parse_from_string(content)
