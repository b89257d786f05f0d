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
Health gate: blocks until a service reports healthy or a timeout elapses.
"""
import logging
from typing import Callable, Dict, Optional
from tenacity import (
    Retrying,
    RetryError,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
    before_sleep_log,
)
from ..exceptions import ConfigError, HealthTimeout
from ..MODELS.runner_settings import RunnerSettings
from ..MODELS.service_definition import ServiceDefinition, HealthStatus

logger = logging.getLogger(__name__)

HealthProbe = Callable[[ServiceDefinition], HealthStatus]


class HealthGate:
    """
    Polls a health probe at a fixed interval.

    There is no jitter and no backoff: the interval is the service's declared
    health-check interval, or the settings' poll interval when none is declared.
    """
    def __init__(self,
                 services: Dict[str, ServiceDefinition],
                 settings: RunnerSettings,
                 probe: HealthProbe):
        """
        :param services: Declared services by name.
        :param settings: Runner settings (default poll interval and timeout).
        :param probe: Callable returning a service's current status.
        """
        self.services = services
        self.settings = settings
        self.probe = probe

    def service(self, name: str) -> ServiceDefinition:
        """Looks up a declared service."""
        try:
            return self.services[name]
        except KeyError:
            raise ConfigError(f"Unknown service '{name}'.") from None

    def interval_for(self, service: ServiceDefinition) -> float:
        """The polling interval for a service."""
        hc = service.health_check
        if hc is not None and not hc.disabled:
            return hc.interval
        return self.settings.poll_interval

    def poll(self, name: str) -> HealthStatus:
        """
        Probes a service once.

        :param name: The service name.
        :return: Its current status.
        """
        return self.probe(self.service(name))

    def wait_healthy(self, name: str, timeout: Optional[float] = None) -> HealthStatus:
        """
        Waits for a service to become healthy.

        :param name: The service name.
        :param timeout: Seconds to wait; defaults to the settings' health timeout.
        :return: ``HealthStatus.HEALTHY``.
        :raises HealthTimeout: If the service is not healthy once the timeout has elapsed.
        """
        service = self.service(name)
        if timeout is None:
            timeout = self.settings.health_timeout
        interval = self.interval_for(service)
        polls = 0

        def attempt() -> HealthStatus:
            nonlocal polls
            polls += 1
            status = self.probe(service)
            logger.debug("Poll %d of %s: %s", polls, name, status.value)
            return status

        logger.info("Waiting for %s to become healthy (timeout %gs, interval %gs)", name, timeout, interval)
        retryer = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_result(lambda status: status != HealthStatus.HEALTHY),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )
        try:
            status = retryer(attempt)
        except RetryError as e:
            last = e.last_attempt.result()
            raise HealthTimeout(name, timeout, last.value, polls) from None

        logger.info("Service %s is healthy after %d poll(s)", name, polls)
        return status
