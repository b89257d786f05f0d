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
Managers for building the variable context used to interpolate topology files.
"""
import logging
import os
from typing import Dict, Mapping, Optional
from dotenv import dotenv_values

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Merges an optional .env file with the process environment.

    The merged context is returned, never written back to ``os.environ``.
    """
    def __init__(self, base_dir: str = ".", environ: Optional[Mapping[str, str]] = None):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving a relative .env path.
        :param environ: The process environment. Defaults to ``os.environ``.
        """
        self.base_dir = base_dir
        self.environ = os.environ if environ is None else environ

    def get_context(self, env_file: Optional[str] = ".env") -> Dict[str, str]:
        """
        Builds the variable context.

        Values from the process environment take precedence over the file,
        as with docker compose.

        :param env_file: Path to a .env file; skipped when missing or None.
        :return: The merged variables.
        """
        context: Dict[str, str] = {}
        if env_file:
            path = env_file if os.path.isabs(env_file) else os.path.join(self.base_dir, env_file)
            if os.path.exists(path):
                logger.debug("Loading variables from %s", path)
                file_values = dotenv_values(path)
                # Keys declared without a value come back as None.
                context.update({k: v for k, v in file_values.items() if v is not None})
            else:
                logger.debug("No env file at %s", path)

        context.update(self.environ)
        return context
