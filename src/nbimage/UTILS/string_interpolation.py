"""
Utilities for substituting ${VAR} references in plan files and Dockerfiles.
"""
import re
from typing import Dict

# ${VAR}, ${VAR:-default}, ${VAR:+alternate}
_BRACED = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Expands ${VAR}, ${VAR:-default} and ${VAR:+alternate} against a context.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str], strict: bool = True) -> str:
        """
        Interpolates variables in the template string.

        :param template: The string containing ${VAR} placeholders.
        :param context: Variable values.
        :param strict: When True an unset ${VAR} raises KeyError; otherwise
            the placeholder is left untouched for a later stage to expand.
        :return: The interpolated string.
        """
        def replace(match):
            name, modifier, alternate = match.group(1), match.group(2), match.group(3)
            value = context.get(name)

            if modifier == '-':
                return value if value else alternate
            if modifier == '+':
                return alternate if value else ''
            if value is not None:
                return value
            if strict:
                raise KeyError(f"Variable {name} not found in context")
            return match.group(0)

        return _BRACED.sub(replace, template)

    @staticmethod
    def references(template: str) -> set:
        """Names of the variables a template refers to."""
        return {m.group(1) for m in _BRACED.finditer(template)}
