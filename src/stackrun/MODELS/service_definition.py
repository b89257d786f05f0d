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
Models for defining services and their health checks.
"""
from typing import List, Dict, Optional, Any
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_validator
from ..UTILS.duration import parse_duration


class HealthStatus(str, Enum):
    """
    Health of a service as reported by the orchestration engine.
    """
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"


class HealthCheck(BaseModel):
    """
    Defines a command to run to check the health of a service.
    """
    model_config = ConfigDict(frozen=True)

    test: List[str]
    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3
    start_period: float = 0.0

    @field_validator("test", mode="before")
    @classmethod
    def _normalize_test(cls, value: Any) -> Any:
        # A bare string is run through the container's shell.
        if isinstance(value, str):
            return ["CMD-SHELL", value]
        return value

    @field_validator("interval", "timeout", "start_period", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        if isinstance(value, (str, int, float)):
            return parse_duration(value)
        return value

    @property
    def disabled(self) -> bool:
        """True when the test is ``["NONE"]`` or empty."""
        return not self.test or self.test[0] == "NONE"

    def command(self) -> List[str]:
        """
        Resolves the test into an argument list runnable inside the container.

        :return: The command, or an empty list when the check is disabled.
        """
        if self.disabled:
            return []
        if self.test[0] == "CMD":
            return list(self.test[1:])
        if self.test[0] == "CMD-SHELL":
            return ["sh", "-c", " ".join(self.test[1:])]
        return list(self.test)


class ServiceDefinition(BaseModel):
    """
    The declaration of a single service in the topology.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str = ""
    ports: List[str] = []
    environment: Dict[str, str] = {}
    env_file: List[str] = []

    health_check: Optional[HealthCheck] = None
    depends_on: List[str] = []
