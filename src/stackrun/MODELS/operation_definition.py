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
Models for operations and the typed steps they are made of.
"""
from typing import List, Dict, Optional, Any
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from ..UTILS.duration import parse_duration


class StepAction(str, Enum):
    """
    What a step asks of the orchestration engine.
    """
    EXEC = "exec"
    COMPOSE = "compose"
    HOST = "host"
    WAIT = "wait"
    INVOKE = "invoke"


class StepDefinition(BaseModel):
    """
    A single step of an operation, bound to at most one target service.

    ``command`` is always an argument list; tokens may carry Jinja2
    placeholders that are rendered one token at a time.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    action: StepAction = StepAction.EXEC
    service: Optional[str] = None
    command: List[str] = []
    interactive: bool = False
    stdin: Optional[str] = None
    stdout: Optional[str] = None
    operation: Optional[str] = None
    timeout: Optional[float] = None

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        # A bare string is one argument, never a shell line.
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [str(v) for v in value]
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if isinstance(value, (str, int, float)):
            return parse_duration(value)
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> "StepDefinition":
        action = self.action
        if action in (StepAction.EXEC, StepAction.WAIT) and not self.service:
            raise ValueError(f"'{action.value}' step requires a service")
        if action in (StepAction.HOST, StepAction.INVOKE) and self.service:
            raise ValueError(f"'{action.value}' step does not take a service")
        if action in (StepAction.EXEC, StepAction.HOST, StepAction.COMPOSE) and not self.command:
            raise ValueError(f"'{action.value}' step requires a command")
        if action == StepAction.INVOKE and not self.operation:
            raise ValueError("'invoke' step requires an operation")
        if action != StepAction.INVOKE and self.operation:
            raise ValueError("only 'invoke' steps take an operation")
        if action != StepAction.WAIT and self.timeout is not None:
            raise ValueError("only 'wait' steps take a timeout")
        return self

    def describe(self) -> str:
        """Short human-readable label used in logs and dry runs."""
        if self.action == StepAction.WAIT:
            return f"wait for {self.service}"
        if self.action == StepAction.INVOKE:
            return f"invoke {self.operation}"
        target = f" {self.service}" if self.service else ""
        return f"{self.action.value}{target}: {' '.join(self.command)}"


class OperationDefinition(BaseModel):
    """
    A named, ordered sequence of steps a user can trigger.

    ``params`` maps each positional parameter name to its default; ``None``
    marks the parameter as required.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    params: Dict[str, Optional[str]] = {}
    requires: List[str] = []
    steps: List[StepDefinition] = []
