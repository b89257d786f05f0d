import json
from stackrun.MODELS.runner_settings import RunnerSettings
from stackrun.MODELS.service_definition import ServiceDefinition, HealthCheck, HealthStatus
from stackrun.MODELS.topology import ProjectDefinition
from stackrun.RUNNERS.step_translator import StepTranslator
from stackrun.MANAGERS.health_probe import ComposeHealthProbe, parse_ps_output, status_from_container


def _ps(**container):
    return json.dumps(dict({'Service': 'db', 'Name': 'shop-db-1'}, **container))


def _probe(runner):
    return ComposeHealthProbe(StepTranslator(ProjectDefinition(), RunnerSettings()), runner)


def test_parse_json_lines():
    output = _ps(State='running') + "\n" + json.dumps({'Service': 'app', 'State': 'exited'}) + "\n"
    containers = parse_ps_output(output)
    assert [c['Service'] for c in containers] == ['db', 'app']


def test_parse_json_array():
    output = json.dumps([{'Service': 'db', 'State': 'running', 'Health': 'healthy'}])
    assert parse_ps_output(output)[0]['Health'] == 'healthy'


def test_parse_empty():
    assert parse_ps_output("  \n") == []


def test_status_from_container():
    assert status_from_container(None) == HealthStatus.STOPPED
    assert status_from_container({'State': 'exited'}) == HealthStatus.STOPPED
    assert status_from_container({'State': 'restarting'}) == HealthStatus.STARTING
    assert status_from_container({'State': 'running', 'Health': 'unhealthy'}) == HealthStatus.UNHEALTHY
    assert status_from_container({'State': 'running', 'Health': 'starting'}) == HealthStatus.STARTING
    assert status_from_container({'State': 'running', 'Health': ''}) is None


def test_engine_reported_health_wins(fake_runner):
    runner = fake_runner(outputs=[(0, _ps(State='running', Health='healthy'))])
    service = ServiceDefinition(name='db', health_check=HealthCheck(test=['CMD', 'false']))

    assert _probe(runner)(service) == HealthStatus.HEALTHY
    assert runner.captured == [['docker', 'compose', 'ps', '--all', '--format', 'json', 'db']]


def test_missing_container_is_stopped(fake_runner):
    runner = fake_runner(outputs=[(0, "")])
    assert _probe(runner)(ServiceDefinition(name='db')) == HealthStatus.STOPPED


def test_engine_failure_is_stopped(fake_runner):
    runner = fake_runner(outputs=[(1, "")])
    assert _probe(runner)(ServiceDefinition(name='db')) == HealthStatus.STOPPED


def test_declared_test_runs_in_container(fake_runner):
    runner = fake_runner(outputs=[(0, _ps(State='running')), (1, "")])
    service = ServiceDefinition(
        name='db', health_check=HealthCheck(test=['CMD', 'mysqladmin', 'ping'], timeout='5s'),
    )

    assert _probe(runner)(service) == HealthStatus.UNHEALTHY
    assert runner.captured[1] == ['docker', 'compose', 'exec', '-T', 'db', 'mysqladmin', 'ping']


def test_running_without_check_is_healthy(fake_runner):
    runner = fake_runner(outputs=[(0, _ps(State='running'))])
    assert _probe(runner)(ServiceDefinition(name='db')) == HealthStatus.HEALTHY
    assert len(runner.captured) == 1


def test_disabled_check_is_not_run(fake_runner):
    runner = fake_runner(outputs=[(0, _ps(State='running'))])
    service = ServiceDefinition(name='db', health_check=HealthCheck(test=['NONE']))
    assert _probe(runner)(service) == HealthStatus.HEALTHY
    assert len(runner.captured) == 1


def test_other_services_are_ignored(fake_runner):
    output = json.dumps({'Service': 'app', 'State': 'running'})
    runner = fake_runner(outputs=[(0, output)])
    assert _probe(runner)(ServiceDefinition(name='db')) == HealthStatus.STOPPED
