"""
Parsers for YAML provisioning plans.
"""
import os
from typing import Dict, Optional

import yaml
from pydantic import ValidationError

from ..exceptions import PlanError
from ..MODELS.provisioning import ProvisioningPlan
from ..UTILS.string_interpolation import EnvironmentInterpolator

BUNDLED_PLANS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "DATA")


class PlanParser:
    """
    Parser for plan files such as the bundled samples.yaml.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional interpolation context.

        :param context: Variables available to ${VAR} references. Unknown
            references are left for the runtime user resolution.
        """
        self.context = context or {}

    def parse(self, plan_path: str) -> ProvisioningPlan:
        """
        Parses a plan from a path.

        :param plan_path: Path to the YAML plan.
        :return: The validated plan.
        """
        with open(plan_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ProvisioningPlan:
        """
        Parses a plan from YAML text.

        :param content: YAML content of the plan.
        :return: The validated plan.
        :raises PlanError: If the YAML is malformed or fails validation.
        """
        content = EnvironmentInterpolator.interpolate(content, self.context, strict=False)
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise PlanError(f"invalid YAML: {e}")

        if not isinstance(data, dict):
            raise PlanError("plan must be a mapping")

        if self.context.get("USER"):
            data["runtime_user"] = self.context["USER"]

        try:
            return ProvisioningPlan.model_validate(data)
        except ValidationError as e:
            raise PlanError(f"invalid plan: {e}")

    @staticmethod
    def bundled(name: str = "samples") -> str:
        """Path of a plan shipped with the package."""
        path = os.path.join(BUNDLED_PLANS_DIR, f"{name}.yaml")
        if not os.path.exists(path):
            raise PlanError(f"no bundled plan named {name!r}")
        return path
