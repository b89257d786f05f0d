import pytest
from stackrun.exceptions import ConfigError
from stackrun.MODELS.runner_settings import RunnerSettings


def test_defaults():
    settings = RunnerSettings.from_context({})
    assert settings.compose_command == ['docker', 'compose']
    assert settings.poll_interval == 2.0
    assert settings.health_timeout == 120.0
    assert settings.dry_run is False


def test_from_context():
    settings = RunnerSettings.from_context({
        'STACKRUN_COMPOSE_COMMAND': 'docker-compose --ansi never',
        'STACKRUN_POLL_INTERVAL': '500ms',
        'STACKRUN_HEALTH_TIMEOUT': '2m',
        'STACKRUN_DRY_RUN': 'yes',
    })
    assert settings.compose_command == ['docker-compose', '--ansi', 'never']
    assert settings.poll_interval == 0.5
    assert settings.health_timeout == 120.0
    assert settings.dry_run is True


def test_overrides_win():
    settings = RunnerSettings.from_context(
        {'STACKRUN_DRY_RUN': 'false'}, dry_run=True, working_dir='/srv', poll_interval=None,
    )
    assert settings.dry_run is True
    assert settings.working_dir == '/srv'
    assert settings.poll_interval == 2.0


def test_invalid_value():
    with pytest.raises(ConfigError, match="Invalid runner settings"):
        RunnerSettings.from_context({'STACKRUN_HEALTH_TIMEOUT': 'soon'})


def test_settings_are_immutable():
    settings = RunnerSettings()
    with pytest.raises(Exception):
        settings.dry_run = True
