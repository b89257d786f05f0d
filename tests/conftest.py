import pytest
import yaml


class FakeRunner:
    """Records commands instead of spawning them; exit codes are scripted per call."""

    def __init__(self, exit_codes=None, outputs=None):
        self.exit_codes = list(exit_codes or [])
        self.outputs = list(outputs or [])
        self.commands = []
        self.redirects = []
        self.captured = []

    def run(self, command, stdin_path=None, stdout_path=None):
        self.commands.append(list(command))
        self.redirects.append((stdin_path, stdout_path))
        return self.exit_codes.pop(0) if self.exit_codes else 0

    def capture(self, command, timeout=None):
        self.captured.append(list(command))
        return self.outputs.pop(0) if self.outputs else (0, "")


class FakeGate:
    """Health gate stand-in that records which services were waited on."""

    def __init__(self, error=None):
        self.waited = []
        self.error = error

    def wait_healthy(self, name, timeout=None):
        self.waited.append((name, timeout))
        if self.error:
            raise self.error
        return "healthy"


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def fake_gate():
    return FakeGate


@pytest.fixture
def write_topology(tmp_path):
    """Writes a topology mapping to stack.yml and returns its path."""
    def _write(content, name="stack.yml"):
        path = tmp_path / name
        with open(path, 'w') as f:
            yaml.dump(content, f, sort_keys=False)
        return str(path)
    return _write


@pytest.fixture
def basic_topology():
    return {
        'project': {'name': 'shop'},
        'services': {
            'db': {
                'image': 'mysql:8.0',
                'healthcheck': {'test': ['CMD', 'mysqladmin', 'ping'], 'interval': '1s'},
            },
            'app': {
                'image': 'shop-app',
                'depends_on': {'db': {'condition': 'service_healthy'}},
            },
        },
        'operations': {
            'up': {
                'description': 'Start everything',
                'steps': [{'action': 'compose', 'command': ['up', '-d']}],
            },
            'migrate': {
                'description': 'Run migrations',
                'requires': ['db'],
                'steps': [{'service': 'app', 'command': ['php', 'artisan', 'migrate']}],
            },
            'restore-db': {
                'params': ['file'],
                'steps': [{'service': 'db', 'command': ['mysql', 'shop'], 'stdin': '{{ file }}'}],
            },
        },
    }
