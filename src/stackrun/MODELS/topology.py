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
Models for the complete topology of a stack.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, ConfigDict
from .service_definition import ServiceDefinition
from .operation_definition import OperationDefinition


class ProjectDefinition(BaseModel):
    """
    How the orchestration engine addresses the stack.
    """
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    compose_files: List[str] = []
    directory: Optional[str] = None


class Topology(BaseModel):
    """
    Services and operations of a stack, as loaded from a topology file.

    Operations are stored already flattened: ``invoke`` steps are inlined
    and ``requires`` entries are turned into leading ``wait`` steps.
    """
    model_config = ConfigDict(frozen=True)

    project: ProjectDefinition = ProjectDefinition()
    services: Dict[str, ServiceDefinition] = {}
    operations: Dict[str, OperationDefinition] = {}
