"""
Managers for resolving plan variables and the environment passed to build commands.
"""
import os
from typing import Dict, List, Optional

from dotenv import dotenv_values

from ..MODELS.provisioning import ProvisioningPlan


class EnvironmentManager:
    """
    Merges variables from .env files, explicit overrides and the plan's
    ENV steps.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        """
        self.base_dir = base_dir

    def get_plan_context(self,
                         env_files: Optional[List[str]] = None,
                         overrides: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Builds the context used to interpolate ${VAR} references in plan files.
        The host process environment is deliberately not part of it, so that
        ${USER} keeps meaning the image's runtime user.

        :param env_files: .env files, later files override earlier ones.
        :param overrides: Explicit values that override everything.
        :return: The interpolation context.
        """
        context: Dict[str, str] = {}
        for env_file in env_files or []:
            file_path = os.path.join(self.base_dir, env_file)
            if os.path.exists(file_path):
                values = dotenv_values(file_path)
                context.update({k: v for k, v in values.items() if v is not None})
        context.update(overrides or {})
        return context

    def get_run_environment(self, plan: ProvisioningPlan,
                            extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Environment for commands run by the pipeline: the current process
        environment, then the plan's ENV steps, then USER set to the runtime user.

        :param plan: The plan being run.
        :param extra: Additional variables applied last.
        :return: The merged environment.
        """
        merged_env = os.environ.copy()
        merged_env.update(plan.environment)
        merged_env["USER"] = plan.runtime_user
        merged_env.update(extra or {})
        return merged_env
