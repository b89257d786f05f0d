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
Utilities for parsing compose-style duration strings.
"""
import re
from typing import Union

_UNITS = {
    "us": 0.000001,
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)(us|ms|s|m|h)")


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Converts a duration into seconds.

    Accepts plain numbers (already seconds) and compose durations such as
    ``30s``, ``1m30s``, ``500ms`` or ``1h``.

    :param value: The duration to convert.
    :return: The duration in seconds.
    :raises ValueError: If the string is not a valid duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return float(value)

    text = value.strip()
    try:
        return parse_duration(float(text))
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text) or not text:
        raise ValueError(f"Invalid duration: {value!r}")
    return total
