"""
Expression resolver.

Dispatches an expression to one of four dialects:
- simple: the small comparison grammar over runtime expression references
- jsonpath: structured query over the context tree (jsonpath-ng)
- xpath: node-set query over an XML document string (lxml)
- regex: pattern search over a single target string
"""

import logging
import re
from typing import Any, Dict, List, Optional

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as parse_jsonpath
from lxml import etree

from ..context import ExecutionContext, to_plain
from ..exceptions import (
    ExpressionError,
    ExpressionSyntaxError,
    MissingContextError,
    PatternError,
    UnsupportedDialectError,
)
from .references import REFERENCE_PATTERN, UNDEFINED
from .simple import SimpleEvaluator
from .substitution import TemplateSubstitutor, stringify


logger = logging.getLogger(__name__)

DIALECTS = ('simple', 'jsonpath', 'xpath', 'regex')


class ExpressionResolver:
    """
    Resolves expressions against an execution context.

    The resolver keeps no per-run state and may be shared between runs.
    """

    def __init__(self):
        self.simple = SimpleEvaluator()
        self.substitutor = TemplateSubstitutor()

    def resolve(
        self,
        expression: str,
        context: Any,
        dialect: str = 'simple',
        extra: Optional[Dict[str, Any]] = None,
        strict: bool = False
    ) -> Any:
        """
        Resolve an expression in the given dialect.

        Args:
            expression: Expression text
            context: ExecutionContext or plain mapping keyed by root name
            dialect: One of simple, jsonpath, xpath, regex
            extra: Dialect subjects: 'data' (jsonpath sub-tree),
                'xml' (xpath document), 'target' (regex subject)
            strict: For simple expressions, raise on unparseable input

        Returns:
            simple: native value or boolean; jsonpath/xpath: list of matches;
            regex: boolean

        Raises:
            UnsupportedDialectError: If the dialect is unknown
            ExpressionError: Dialect-specific failures
        """
        extra = extra or {}
        logger.debug(f"Resolving {dialect} expression: {expression!r}")

        if dialect == 'simple':
            return self.simple.evaluate(expression, context, strict=strict)
        elif dialect == 'jsonpath':
            if 'data' in extra:
                data = extra['data']
            else:
                data = self._context_tree(context)
            return self._resolve_jsonpath(expression, data)
        elif dialect == 'xpath':
            return self._resolve_xpath(expression, extra.get('xml'))
        elif dialect == 'regex':
            return self._resolve_regex(expression, extra.get('target', UNDEFINED))
        raise UnsupportedDialectError(dialect)

    def resolve_value(self, value: Any, context: Any) -> Any:
        """
        Resolve a parameter value, body leaf or output mapping.

        Non-strings pass through. Strings without any reference are literals
        and are returned unchanged, so "true" or "123" stay strings.
        """
        if not isinstance(value, str):
            return value
        if self.substitutor.has_embedded(value):
            return self.substitutor.substitute_embedded(value, context)
        if not REFERENCE_PATTERN.search(value):
            return value
        return self.simple.evaluate(value, context)

    def resolve_template(self, template: Any, context: Any) -> Any:
        """Resolve every leaf of a nested payload, keeping its shape."""
        if isinstance(template, dict):
            return {key: self.resolve_template(item, context) for key, item in template.items()}
        if isinstance(template, list):
            return [self.resolve_template(item, context) for item in template]
        return self.resolve_value(template, context)

    def _context_tree(self, context: Any) -> Any:
        if isinstance(context, ExecutionContext):
            return context.to_dict()
        return to_plain(context)

    def _resolve_jsonpath(self, expression: str, data: Any) -> List[Any]:
        """Run a JSONPath query; no match gives an empty list."""
        try:
            query = parse_jsonpath(expression)
        except (JsonPathLexerError, JsonPathParserError) as e:
            raise ExpressionSyntaxError(
                f"Invalid JSONPath expression '{expression}': {e}",
                {'expression': expression},
            )

        if data is UNDEFINED:
            data = None

        try:
            return [match.value for match in query.find(to_plain(data))]
        except TypeError as e:
            raise ExpressionError(
                f"JSONPath evaluation failed for '{expression}': {e}",
                {'expression': expression},
            )

    def _resolve_xpath(self, expression: str, xml: Any) -> List[str]:
        """Run an XPath query over an XML document string."""
        if xml is None or xml is UNDEFINED or (isinstance(xml, (str, bytes)) and not xml.strip()):
            raise MissingContextError(
                "XML context is required for xpath expressions",
                {'expression': expression},
            )

        document = xml if isinstance(xml, bytes) else str(xml).strip().encode('utf-8')
        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        try:
            root = etree.fromstring(document, parser)
        except etree.XMLSyntaxError as e:
            raise MissingContextError(
                f"XML context could not be parsed: {e}",
                {'expression': expression},
            )

        try:
            result = root.xpath(expression)
        except etree.XPathError as e:
            raise ExpressionSyntaxError(
                f"Invalid XPath expression '{expression}': {e}",
                {'expression': expression},
            )

        if isinstance(result, bool):
            return ['true'] if result else []
        if isinstance(result, float):
            return [str(int(result)) if result.is_integer() else str(result)]
        if isinstance(result, str):
            return [str(result)]

        values = []
        for item in result:
            if isinstance(item, etree._Element):
                values.append(''.join(item.itertext()))
            else:
                values.append(str(item))
        return values

    def _resolve_regex(self, pattern: str, target: Any) -> bool:
        """Search the target string for the pattern."""
        if target is None or target is UNDEFINED:
            raise MissingContextError(
                "A target value is required for regex expressions",
                {'pattern': pattern},
            )

        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise PatternError(f"Invalid regex pattern '{pattern}': {e}", {'pattern': pattern})

        return compiled.search(stringify(target)) is not None
