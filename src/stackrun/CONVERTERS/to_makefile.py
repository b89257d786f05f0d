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
Converter for generating a Makefile whose targets delegate to stackrun.
"""
import logging
import os
import re
from jinja2 import Template
from ..MODELS.topology import Topology

logger = logging.getLogger(__name__)

MAKEFILE_TEMPLATE = """\
# Generated by stackrun from {{ topology_file }}. Do not edit.
STACKRUN ?= stackrun

.PHONY: help{% for target in targets %} {{ target.name }}{% endfor %}

# Default target
help: ## Show this help message
\t@echo 'Usage: make [target]'
\t@echo ''
\t@echo 'Targets:'
\t@awk 'BEGIN {FS = ":.*?## "} /^[a-zA-Z_-]+:.*?## / {printf "  %-15s %s\\n", $$1, $$2}' $(MAKEFILE_LIST)
{% for target in targets %}
{{ target.name }}: ## {{ target.description }}
\t$(STACKRUN) -f {{ topology_file }} run {{ target.name }}{% for param, var in target.variables %} $(if $({{ var }}),--param '{{ param }}=$({{ var }})'){% endfor %}
{% endfor %}"""

_TARGET_NAME = re.compile(r"^[a-zA-Z0-9_.-]+$")


def make_variable(param: str) -> str:
    """
    Converts a param name into a make variable name (``backup-file`` -> ``BACKUP_FILE``).
    """
    return re.sub(r"[^A-Za-z0-9_]", "_", param).upper()


class MakefileConverter:
    """
    Converts a topology's operations into make targets.
    """

    def __init__(self, topology: Topology, topology_file: str = "stack.yml"):
        """
        Initializes the Makefile converter.

        :param topology: The loaded topology.
        :param topology_file: Topology path written into the recipes.
        """
        self.topology = topology
        self.topology_file = topology_file
        self.template = Template(MAKEFILE_TEMPLATE)

    def render(self) -> str:
        """
        Renders the Makefile.

        :return: The Makefile content.
        """
        targets = []
        for name, operation in self.topology.operations.items():
            if not _TARGET_NAME.match(name) or name == "help":
                logger.warning("Skipping operation %r: not usable as a make target", name)
                continue
            # Params go by name and only when set, so stackrun applies each operation's own defaults.
            variables = [(param, make_variable(param)) for param in operation.params]
            targets.append({
                "name": name,
                "description": operation.description.splitlines()[0] if operation.description else name,
                "variables": variables,
            })

        return self.template.render(
            topology_file=self.topology_file,
            targets=targets,
        )

    def convert(self, output_path: str = "Makefile") -> str:
        """
        Writes the Makefile.

        :param output_path: Where to write it.
        :return: The path written.
        """
        out_dir = os.path.dirname(output_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(output_path, "w") as f:
            f.write(self.render())
        logger.info("Makefile written to %s", output_path)
        return output_path
