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
Exceptions raised while loading a topology or running its operations.
"""
from typing import Optional


class StackrunError(Exception):
    """Base class for all stackrun errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigError(StackrunError):
    """Raised when a topology file is missing, malformed, or inconsistent."""


class UnknownOperationError(StackrunError):
    """Raised when an operation name is not declared in the topology."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown operation '{name}'.")


class OperationArgumentError(StackrunError):
    """Raised when the arguments given to an operation do not match its params."""


class StepFailure(StackrunError):
    """
    Raised when a step's external command exits with a non-zero status.

    Steps before ``step_index`` have already completed and are not rolled back.
    """

    def __init__(self, operation: str, step_index: int, exit_code: int):
        self.operation = operation
        self.step_index = step_index
        self.exit_code = exit_code
        super().__init__(
            f"Operation '{operation}' failed at step {step_index} with exit code {exit_code}."
        )


class HealthTimeout(StackrunError):
    """Raised when a service does not report healthy within the allotted time."""

    def __init__(self, service: str, timeout: float, last_status: Optional[str] = None, polls: int = 0):
        self.service = service
        self.timeout = timeout
        self.last_status = last_status
        self.polls = polls
        super().__init__(
            f"Service '{service}' did not become healthy within {timeout:g}s "
            f"(last status: {last_status or 'unknown'}, {polls} polls)."
        )
