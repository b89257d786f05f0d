import os
import re
import pytest
from stackrun.PARSERS.topology_parser import TopologyParser
from stackrun.MODELS.runner_settings import RunnerSettings
from stackrun.MODELS.operation_definition import StepAction
from stackrun.MANAGERS.command_dispatcher import CommandDispatcher
from stackrun.RUNNERS.dependency_resolver import DependencyResolver
from stackrun.CONVERTERS.to_makefile import MakefileConverter

EXAMPLE = os.path.join(os.path.dirname(__file__), '..', '..', 'examples', 'laravel', 'stack.yml')


@pytest.fixture
def topology():
    return TopologyParser(context={}).parse(EXAMPLE)


def _dispatcher(topology, runner, gate):
    return CommandDispatcher(topology, RunnerSettings(), runner=runner, health_gate=gate, variables={})


def test_all_targets_are_operations(topology):
    expected = [
        'build', 'up', 'down', 'restart', 'logs', 'logs-app', 'logs-nginx', 'logs-db',
        'shell', 'nginx-shell', 'db-shell', 'redis-shell', 'queue-shell',
        'install', 'migrate', 'migrate-fresh', 'seed', 'fresh', 'test', 'test-coverage',
        'cache', 'clear', 'optimize', 'key', 'permissions', 'assets', 'assets-dev', 'assets-watch',
        'status', 'clean', 'reset', 'backup-db', 'restore-db', 'health', 'lint', 'ide-helper',
    ]
    assert sorted(topology.operations) == sorted(expected)


def test_start_order(topology):
    graph = {n: s.depends_on for n, s in topology.services.items()}
    assert DependencyResolver(graph).resolve_order() == ['db', 'redis', 'app', 'nginx', 'queue', 'mailpit']


def test_service_defaults(topology):
    db = topology.services['db']
    assert db.environment['MYSQL_DATABASE'] == 'laravel'
    assert db.health_check.interval == 10.0
    assert topology.services['app'].health_check.start_period == 40.0
    assert topology.project.name == 'laravel'


def test_reset_runs_clean_build_install(topology):
    steps = topology.operations['reset'].steps
    assert steps[0].command == ['down', '-v', '--rmi', 'all', '--remove-orphans']
    assert steps[1].command == ['build', '--no-cache']
    assert steps[2].command == ['cp', 'docker.env', '.env']
    assert [s.action for s in steps].count(StepAction.WAIT) == 1
    assert len(steps) == 2 + len(topology.operations['install'].steps)


def test_migrate_waits_for_db(topology, fake_runner, fake_gate):
    runner, gate = fake_runner(), fake_gate()
    _dispatcher(topology, runner, gate).dispatch('migrate')

    assert gate.waited == [('db', None)]
    assert runner.commands == [
        ['docker', 'compose', '-p', 'laravel', 'exec', '-T', 'app', 'php', 'artisan', 'migrate'],
    ]


def test_restore_feeds_dump_to_mysql(topology, fake_runner, fake_gate):
    runner = fake_runner()
    _dispatcher(topology, runner, fake_gate()).dispatch('restore-db', ['backup.sql'])

    assert runner.commands[0][-4:] == ['mysql', '-ularavel', '-ppassword', 'laravel']
    assert runner.redirects == [('backup.sql', None)]


def test_backup_writes_timestamped_dump(topology, fake_runner, fake_gate):
    runner = fake_runner()
    _dispatcher(topology, runner, fake_gate()).dispatch('backup-db')

    assert runner.commands[0][-4:] == ['mysqldump', '-ularavel', '-ppassword', 'laravel']
    assert re.fullmatch(r"backup_\d{8}_\d{6}\.sql", runner.redirects[0][1])


def test_credentials_come_from_env(topology, fake_runner, fake_gate):
    runner = fake_runner()
    dispatcher = CommandDispatcher(
        topology, RunnerSettings(), runner=runner, health_gate=fake_gate(),
        variables={'DB_USERNAME': 'admin', 'DB_PASSWORD': 's3cret', 'DB_DATABASE': 'shop'},
    )
    dispatcher.dispatch('db-shell')
    assert runner.commands[0] == [
        'docker', 'compose', '-p', 'laravel', 'exec', 'db', 'mysql', '-uadmin', '-ps3cret', 'shop',
    ]


def test_health_format_is_passed_through(topology, fake_runner, fake_gate):
    runner = fake_runner()
    _dispatcher(topology, runner, fake_gate()).dispatch('health')
    assert runner.commands[0][-1] == 'table {{.Name}}\t{{.Status}}\t{{.Ports}}'


def test_makefile_export(topology):
    content = MakefileConverter(topology).render()
    assert 'restore-db: ## Restore database from a dump file' in content
    assert "$(STACKRUN) -f stack.yml run restore-db $(if $(FILE),--param 'file=$(FILE)')" in content
    assert "FILE ?= backup_{{ now.strftime('%Y%m%d_%H%M%S') }}.sql" not in content
