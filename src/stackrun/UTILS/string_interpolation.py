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
Compose-style variable interpolation for topology files.
"""
import re
from typing import Mapping


class EnvironmentInterpolator:
    """
    Interpolates variables the way docker compose does.
    Supports ${VAR}, $VAR, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR+value}, ${VAR:?message}, ${VAR?message} and the $$ escape.
    """
    # Group 1: $$ escape
    # Group 2: braced name, group 3: modifier, group 4: modifier argument
    # Group 5: bare name
    PATTERN = re.compile(
        r"(\$\$)"
        r"|\$\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+?])([^}]*))?\}"
        r"|\$([A-Za-z_][A-Za-z0-9_]*)"
    )

    @classmethod
    def interpolate(cls, template: str, context: Mapping[str, str]) -> str:
        """
        Interpolates variables in the template using the provided context.

        :param template: The text containing variable references.
        :param context: The variable context.
        :return: The interpolated text.
        :raises KeyError: If a plain ${VAR} is unset, or a ${VAR:?msg} check fails.
        """
        def replace(match):
            if match.group(1):
                return "$"

            name = match.group(2) or match.group(5)
            modifier = match.group(3)
            argument = match.group(4) or ""
            value = context.get(name)

            if modifier is None:
                if value is None:
                    raise KeyError(f"Variable {name} is not set")
                return value

            # With a colon, an empty value counts as unset.
            is_set = bool(value) if modifier.startswith(":") else value is not None
            kind = modifier[-1]

            if kind == "-":
                return value if is_set else argument
            if kind == "+":
                return argument if is_set else ""
            if not is_set:
                raise KeyError(argument or f"Variable {name} is not set")
            return value

        return cls.PATTERN.sub(replace, template)
