"""
Variable interpolation for stack files.
"""
import re
from typing import Dict, List, Optional

from .logging import get_logger

logger = get_logger(__name__, prefix="Stack")

# $$ | ${VAR} | ${VAR:-default} | ${VAR-default} | ${VAR:+alt} | $VAR
_PATTERN = re.compile(
    r'\$(?:(?P<escaped>\$)'
    r'|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<modifier>:?[-+])(?P<alt>[^}]*))?\}'
    r'|(?P<named>[A-Za-z_][A-Za-z0-9_]*))'
)


class EnvironmentInterpolator:
    """
    Substitutes environment variables into stack file text.

    Supports ``${VAR}``, ``$VAR``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+value}`` and the ``$$`` escape. Unset variables without a
    default resolve to an empty string and are reported in ``missing``.
    """
    def __init__(self, context: Dict[str, str]):
        self.context = context
        self.missing: List[str] = []

    def _replace(self, match) -> str:
        if match.group("escaped"):
            return "$"
        name = match.group("braced") or match.group("named")
        modifier = match.group("modifier")
        alt = match.group("alt") or ""
        value: Optional[str] = self.context.get(name)

        if modifier == ":-":
            return value if value else alt
        if modifier == "-":
            return alt if value is None else value
        if modifier == ":+":
            return alt if value else ""
        if modifier == "+":
            return "" if value is None else alt
        if value is None:
            if name not in self.missing:
                self.missing.append(name)
            return ""
        return value

    def interpolate(self, template: str) -> str:
        seen = len(self.missing)
        result = _PATTERN.sub(self._replace, template)
        for name in self.missing[seen:]:
            logger.warning(f"Variable {name} is not set, defaulting to an empty string")
        return result
