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
Dependency resolution for services to determine startup order.
"""
from typing import Dict, List, Mapping, Sequence
from ..exceptions import ConfigError


class DependencyResolver:
    """
    Validates a dependency graph and resolves it into a start order.

    The graph maps each node to the nodes it depends on. The same resolver
    checks services (``depends_on``) and operations (``invoke`` steps).
    """
    def __init__(self, graph: Mapping[str, Sequence[str]], kind: str = "service"):
        """
        :param graph: Node name to the names it depends on, in declaration order.
        :param kind: Noun used in error messages.
        """
        self.graph = graph
        self.kind = kind

    def validate(self) -> None:
        """
        Checks that every reference is declared and that there is no cycle.

        :raises ConfigError: On an undeclared reference or a cycle.
        """
        for name, deps in self.graph.items():
            for dep in deps:
                if dep not in self.graph:
                    raise ConfigError(
                        f"{self.kind.capitalize()} '{name}' depends on undeclared {self.kind} '{dep}'."
                    )
        self.resolve_order()

    def resolve_order(self) -> List[str]:
        """
        Topologically sorts the graph with a depth-first traversal.

        Ties follow declaration order, so the result is deterministic.

        :return: Node names, dependencies first.
        :raises ConfigError: If a cycle is detected.
        """
        ordered: List[str] = []
        visited = set()
        visiting: Dict[str, int] = {}
        path: List[str] = []

        def visit(name: str):
            if name in visiting:
                cycle = path[visiting[name]:] + [name]
                raise ConfigError(f"Circular {self.kind} dependency: {' -> '.join(cycle)}")
            if name in visited:
                return
            visiting[name] = len(path)
            path.append(name)
            for dep in self.graph.get(name, []):
                visit(dep)
            path.pop()
            del visiting[name]
            visited.add(name)
            ordered.append(name)

        for name in self.graph:
            visit(name)

        return ordered

    def dependencies_of(self, name: str) -> List[str]:
        """
        Returns every transitive dependency of a node, in start order.

        :param name: The node to inspect.
        :return: Dependencies, excluding the node itself.
        """
        wanted = set()
        stack = list(self.graph.get(name, []))
        while stack:
            dep = stack.pop()
            if dep not in wanted:
                wanted.add(dep)
                stack.extend(self.graph.get(dep, []))
        return [n for n in self.resolve_order() if n in wanted]
