"""
Text substitution of runtime expressions.

Two forms are supported:
- embedded regions: "Order {$steps.create.outputs.id} placed"
- free-text references: "Bearer $inputs.token"
"""

import json
import logging
import re
from typing import Any

from ..context import to_plain
from .references import REFERENCE_PATTERN, UNDEFINED, resolve_reference


logger = logging.getLogger(__name__)


def stringify(value: Any) -> str:
    """
    Convert a resolved value to its text form for substitution.

    Args:
        value: Value to convert

    Returns:
        'true'/'false' for booleans, '' for null or undefined,
        JSON for containers and str() for everything else
    """
    if value is None or value is UNDEFINED:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(to_plain(value))


class TemplateSubstitutor:
    """Replaces runtime expressions found inside literal strings."""

    # "{ $ref }" with optional inner whitespace; other braces stay literal
    EMBEDDED_PATTERN = re.compile(r'\{\s*(' + REFERENCE_PATTERN.pattern + r')\s*\}')

    def has_embedded(self, text: str) -> bool:
        return bool(self.EMBEDDED_PATTERN.search(text))

    def substitute_embedded(self, text: str, context: Any) -> str:
        """
        Resolve every embedded ``{$...}`` region independently.

        A region whose path is missing becomes the empty string. An unknown
        root propagates as UnknownRootError.
        """
        def replace_region(match):
            value = resolve_reference(match.group(1), context)
            if value is UNDEFINED:
                logger.debug(f"Embedded expression resolved to nothing: {match.group(1)}")
            return stringify(value)

        return self.EMBEDDED_PATTERN.sub(replace_region, text)

    def interpolate(self, text: str, context: Any) -> str:
        """Replace each free-text reference with its stringified value."""
        return REFERENCE_PATTERN.sub(
            lambda match: stringify(resolve_reference(match.group(0), context)),
            text
        )
