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
Synchronous execution of external commands with exit-code forwarding.
"""
import logging
import os
import subprocess
from contextlib import ExitStack
from typing import List, Dict, Optional, Tuple
import psutil

logger = logging.getLogger(__name__)

# Exit statuses a POSIX shell reports for the same failures.
EXIT_REDIRECT_FAILED = 1
EXIT_COMMAND_NOT_FOUND = 127


class ProcessRunner:
    """
    Runs one external process at a time and waits for it to exit.
    """
    def __init__(self,
                 working_dir: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None,
                 stop_timeout: float = 10.0):
        """
        Initializes the process runner.

        Args:
            working_dir (Optional[str]): Directory processes start in; relative redirections resolve against it.
            env (Optional[Dict[str, str]]): Environment for the processes. Inherits the current one when None.
            stop_timeout (float): Seconds to wait after SIGTERM before killing on interrupt.
        """
        self.working_dir = working_dir
        self.env = env
        self.stop_timeout = stop_timeout

    def run(self,
            command: List[str],
            stdin_path: Optional[str] = None,
            stdout_path: Optional[str] = None) -> int:
        """
        Runs a command to completion.

        Args:
            command (List[str]): Command and arguments; never passed through a shell.
            stdin_path (Optional[str]): File fed to the process's standard input.
            stdout_path (Optional[str]): File receiving the process's standard output.

        Returns:
            int: The process exit code.
        """
        logger.info("Running: %s", " ".join(command))

        with ExitStack() as stack:
            try:
                stdin = stack.enter_context(open(self._resolve(stdin_path), 'rb')) if stdin_path else None
                stdout = None
                if stdout_path:
                    out_path = self._resolve(stdout_path)
                    out_dir = os.path.dirname(out_path)
                    if out_dir:
                        os.makedirs(out_dir, exist_ok=True)
                    stdout = stack.enter_context(open(out_path, 'wb'))
            except OSError as e:
                logger.error("Cannot redirect %s: %s", e.filename, e.strerror)
                return EXIT_REDIRECT_FAILED

            try:
                process = subprocess.Popen(
                    command,
                    cwd=self.working_dir,
                    env=self.env,
                    stdin=stdin,
                    stdout=stdout,
                    # Avoid shell=True for security reasons (CWE-78)
                    shell=False,
                )
            except FileNotFoundError:
                logger.error("Command not found: %s", command[0])
                return EXIT_COMMAND_NOT_FOUND

            try:
                return process.wait()
            except KeyboardInterrupt:
                self.terminate(process)
                raise

    def capture(self, command: List[str], timeout: Optional[float] = None) -> Tuple[int, str]:
        """
        Runs a command and captures its standard output.

        Args:
            command (List[str]): Command and arguments.
            timeout (Optional[float]): Seconds before the command is killed.

        Returns:
            Tuple[int, str]: Exit code and standard output. A timeout is reported as exit code 124.
        """
        logger.debug("Capturing: %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                cwd=self.working_dir,
                env=self.env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout,
                text=True,
            )
        except subprocess.TimeoutExpired:
            return 124, ""
        return result.returncode, result.stdout

    def terminate(self, process: subprocess.Popen):
        """
        Stops a process and its children: SIGTERM first, SIGKILL for survivors.

        Args:
            process (subprocess.Popen): The process to stop.
        """
        try:
            parent = psutil.Process(process.pid)
            family = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        logger.warning("Interrupted, stopping process %d", process.pid)
        for proc in family:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
        _, alive = psutil.wait_procs(family, timeout=self.stop_timeout)
        for proc in alive:
            logger.warning("Process %d did not terminate, killing...", proc.pid)
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        process.wait()

    def _resolve(self, path: str) -> str:
        if self.working_dir and not os.path.isabs(path):
            return os.path.join(self.working_dir, path)
        return path
