"""
Message Renderer

Replaces `{{name}}` and dotted `{{customer.first_name}}` placeholders.
Placeholders without a value are left verbatim; rendering never raises.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional

from .models import Customer

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")

_MISSING = object()


def _lookup(variables: Mapping[str, Any], path: str) -> Any:
    value: Any = variables
    for key in path.split("."):
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        else:
            return _MISSING
    return value


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class MessageRenderer:
    """Placeholder substitution shared by campaigns, one-off sends and special-day emails"""

    def render(self, text: Optional[str], variables: Optional[Mapping[str, Any]] = None) -> str:
        if not text:
            return text or ""
        variables = variables or {}

        def replace(match: "re.Match[str]") -> str:
            value = _lookup(variables, match.group(1))
            if value is _MISSING or isinstance(value, Mapping):
                return match.group(0)
            try:
                return _format(value)
            except Exception as e:
                logger.warning(f"Could not format placeholder {match.group(0)}: {e}")
                return match.group(0)

        return PLACEHOLDER_PATTERN.sub(replace, text)

    def build_variables(
        self,
        customer: Optional[Customer] = None,
        defaults: Optional[Mapping[str, Any]] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Template defaults, then caller values, then the `customer` namespace"""
        variables: Dict[str, Any] = dict(defaults or {})
        variables.update(extra or {})
        if customer is not None:
            variables["customer"] = customer.render_variables()
        return variables
