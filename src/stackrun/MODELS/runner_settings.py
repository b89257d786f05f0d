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
Runtime settings for the runner, passed explicitly into every component.
"""
import shlex
from typing import List, Mapping, Optional
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from ..exceptions import ConfigError
from ..UTILS.duration import parse_duration

ENV_PREFIX = "STACKRUN_"

_TRUE = {"1", "true", "yes", "y", "on"}


class RunnerSettings(BaseModel):
    """
    How the runner talks to the orchestration engine.
    """
    model_config = ConfigDict(frozen=True)

    compose_command: List[str] = ["docker", "compose"]
    poll_interval: float = 2.0
    health_timeout: float = 120.0
    dry_run: bool = False
    working_dir: Optional[str] = None

    @field_validator("poll_interval", "health_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        if isinstance(value, (str, int, float)):
            return parse_duration(value)
        return value

    @classmethod
    def from_context(cls, context: Mapping[str, str], **overrides) -> "RunnerSettings":
        """
        Builds settings from ``STACKRUN_*`` variables, then applies overrides.

        :param context: Variable context (usually .env values plus the process environment).
        :param overrides: Explicit values, e.g. from CLI flags. ``None`` values are ignored.
        :return: The settings.
        """
        values = {}
        raw = context.get(ENV_PREFIX + "COMPOSE_COMMAND")
        if raw:
            values["compose_command"] = shlex.split(raw)
        raw = context.get(ENV_PREFIX + "POLL_INTERVAL")
        if raw:
            values["poll_interval"] = raw
        raw = context.get(ENV_PREFIX + "HEALTH_TIMEOUT")
        if raw:
            values["health_timeout"] = raw
        raw = context.get(ENV_PREFIX + "DRY_RUN")
        if raw is not None:
            values["dry_run"] = raw.strip().lower() in _TRUE

        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid runner settings: {e}") from e
