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
Execution of package-manager and system commands for pipeline steps.
"""
import logging
import subprocess
from typing import Dict, List, Optional

from ..exceptions import StepFailedError

logger = logging.getLogger("nbimage.runners")


class CommandRunner:
    """
    Runs commands one at a time, blocking until each completes.
    """
    def __init__(self, cwd: Optional[str] = None):
        """
        Initializes the command runner.

        Args:
            cwd (Optional[str]): Directory to run commands in.
        """
        self.cwd = cwd
        self.history: List[List[str]] = []

    def run(self, argv: List[str], env: Optional[Dict[str, str]] = None) -> str:
        """
        Runs a command and returns its combined output.

        Args:
            argv (List[str]): Command and arguments to execute.
            env (Optional[Dict[str, str]]): Environment for the command.

        Returns:
            str: Captured stdout and stderr.

        Raises:
            StepFailedError: If the command cannot be started or exits non-zero.
        """
        self.history.append(list(argv))
        logger.debug("Running: %s", " ".join(argv))
        try:
            result = subprocess.run(
                argv,
                env=env,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                # Arguments come from plan files; never hand them to a shell
                shell=False,
            )
        except OSError as e:
            raise StepFailedError(argv, 127, str(e))

        if result.returncode != 0:
            logger.error("Command failed (%d): %s", result.returncode, " ".join(argv))
            raise StepFailedError(argv, result.returncode, result.stdout or "")
        return result.stdout or ""


class DryRunCommandRunner(CommandRunner):
    """
    Records commands without executing them.
    """
    def run(self, argv: List[str], env: Optional[Dict[str, str]] = None) -> str:
        self.history.append(list(argv))
        logger.info("[dry-run] %s", " ".join(argv))
        return ""
