"""Runtime expression resolution."""

from .references import UNDEFINED, RuntimeExpression, resolve_reference
from .resolver import DIALECTS, ExpressionResolver
from .simple import SimpleEvaluator, is_truthy
from .substitution import TemplateSubstitutor, stringify

__all__ = [
    'UNDEFINED',
    'RuntimeExpression',
    'resolve_reference',
    'DIALECTS',
    'ExpressionResolver',
    'SimpleEvaluator',
    'is_truthy',
    'TemplateSubstitutor',
    'stringify',
]
