"""
Criteria evaluation for workflow steps and actions.

A criteria list holds when every criterion is truthy (AND semantics).
An empty or absent list always holds.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from ..exceptions import MissingContextError
from ..expressions import UNDEFINED, ExpressionResolver, is_truthy
from ..expressions.references import REFERENCE_PATTERN, resolve_reference
from ..models import Criterion, Dialect


logger = logging.getLogger(__name__)

# Supplies the XML document for xpath criteria that declare no context
XmlProvider = Callable[[Any], Optional[str]]


class CriteriaEvaluator:
    """
    Evaluates ordered criteria lists.

    Supports the four expression dialects:
    - simple: the criterion condition is evaluated strictly against the context
    - jsonpath: the query runs over the criterion context, or the whole context
    - xpath: the query runs over the XML found at the criterion context
    - regex: the pattern is searched in the criterion context value
    """

    def __init__(
        self,
        resolver: Optional[ExpressionResolver] = None,
        xml_provider: Optional[XmlProvider] = None
    ):
        """
        Initialize the criteria evaluator.

        Args:
            resolver: Expression resolver to use (a new one by default)
            xml_provider: Optional collaborator returning the XML document
                for xpath criteria that do not declare a context
        """
        self.resolver = resolver or ExpressionResolver()
        self.xml_provider = xml_provider

    def evaluate(
        self,
        criteria: Optional[List[Union[Criterion, Dict[str, Any]]]],
        context: Any
    ) -> bool:
        """
        Evaluate criteria against a result context.

        Args:
            criteria: Criteria list (None or empty means true)
            context: Result context of the step

        Returns:
            True if every criterion is truthy. Stops at the first falsy one.

        Raises:
            ExpressionError: If a criterion cannot be evaluated
        """
        for criterion in criteria or []:
            if isinstance(criterion, dict):
                criterion = Criterion.from_dict(criterion)
            if not self.evaluate_criterion(criterion, context):
                logger.debug(f"Criterion not met: {criterion.condition!r}")
                return False
        return True

    def evaluate_criterion(self, criterion: Criterion, context: Any) -> bool:
        dialect = criterion.type or Dialect.SIMPLE.value

        if dialect == Dialect.SIMPLE.value:
            result = self.resolver.resolve(criterion.condition, context, 'simple', strict=True)
        elif dialect == Dialect.JSONPATH.value:
            extra = {}
            if criterion.context:
                extra['data'] = self._subject(criterion.context, context)
            result = self.resolver.resolve(criterion.condition, context, 'jsonpath', extra)
        elif dialect == Dialect.XPATH.value:
            result = self.resolver.resolve(
                criterion.condition, context, 'xpath', {'xml': self._xml_for(criterion, context)}
            )
        elif dialect == Dialect.REGEX.value:
            if not criterion.context:
                raise MissingContextError(
                    "Regex criteria require a context expression",
                    {'condition': criterion.condition},
                )
            result = self.resolver.resolve(
                criterion.condition, context, 'regex',
                {'target': self._subject(criterion.context, context)}
            )
        else:
            # Let the resolver report the unsupported dialect
            result = self.resolver.resolve(criterion.condition, context, dialect)

        return is_truthy(result)

    def _subject(self, expression: str, context: Any) -> Any:
        """Resolve a criterion context expression to the value it selects."""
        if REFERENCE_PATTERN.fullmatch(expression.strip()):
            return resolve_reference(expression, context)
        return self.resolver.resolve_value(expression, context)

    def _xml_for(self, criterion: Criterion, context: Any) -> Any:
        if criterion.context:
            return self._subject(criterion.context, context)
        if self.xml_provider is not None:
            return self.xml_provider(context)
        return UNDEFINED
