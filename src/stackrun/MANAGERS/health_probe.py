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
Health probes asking the orchestration engine for a service's current status.
"""
import json
import logging
from typing import Any, Dict, List, Optional
from ..MODELS.service_definition import ServiceDefinition, HealthStatus
from ..RUNNERS.process_runner import ProcessRunner
from ..RUNNERS.step_translator import StepTranslator

logger = logging.getLogger(__name__)

_ENGINE_HEALTH = {
    "starting": HealthStatus.STARTING,
    "healthy": HealthStatus.HEALTHY,
    "unhealthy": HealthStatus.UNHEALTHY,
}

_STARTING_STATES = {"created", "restarting"}


def parse_ps_output(text: str) -> List[Dict[str, Any]]:
    """
    Parses ``docker compose ps --format json`` output.

    Older compose releases print one JSON array, newer ones one object per line.

    :param text: Raw command output.
    :return: One dictionary per container.
    """
    text = text.strip()
    if not text:
        return []
    if text.startswith("["):
        return list(json.loads(text))
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def status_from_container(container: Optional[Dict[str, Any]]) -> Optional[HealthStatus]:
    """
    Maps one container entry to a status.

    :param container: Entry from :func:`parse_ps_output`, or None when there is no container.
    :return: The status, or None when the container runs without engine-reported health.
    """
    if container is None:
        return HealthStatus.STOPPED
    state = str(container.get("State", "")).lower()
    if state in _STARTING_STATES:
        return HealthStatus.STARTING
    if state != "running":
        return HealthStatus.STOPPED
    return _ENGINE_HEALTH.get(str(container.get("Health", "")).lower())


class ComposeHealthProbe:
    """
    Reads a service's health from ``docker compose ps``.

    When the engine reports no health for a running container, the
    topology's own health-check test is run inside it; a running container
    with no declared test counts as healthy.
    """
    def __init__(self, translator: StepTranslator, runner: ProcessRunner):
        self.translator = translator
        self.runner = runner

    def __call__(self, service: ServiceDefinition) -> HealthStatus:
        code, output = self.runner.capture(self.translator.ps_command(service.name))
        if code != 0:
            logger.debug("ps for %s exited with %d", service.name, code)
            return HealthStatus.STOPPED

        try:
            containers = parse_ps_output(output)
        except json.JSONDecodeError:
            logger.warning("Unreadable ps output for %s: %r", service.name, output[:200])
            return HealthStatus.STOPPED

        container = next((c for c in containers if c.get("Service") == service.name), None)
        status = status_from_container(container)
        if status is not None:
            return status

        hc = service.health_check
        if hc is None or hc.disabled:
            return HealthStatus.HEALTHY

        code, _ = self.runner.capture(
            self.translator.exec_command(service.name, hc.command()), timeout=hc.timeout
        )
        return HealthStatus.HEALTHY if code == 0 else HealthStatus.UNHEALTHY
