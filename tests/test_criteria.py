"""
Tests for CriteriaEvaluator.
"""

from unittest.mock import Mock

import pytest

from apiflow.context import ExecutionContext
from apiflow.exceptions import (
    ExpressionSyntaxError,
    MissingContextError,
    PatternError,
    UnsupportedDialectError,
)
from apiflow.models import Criterion
from apiflow.workflow.criteria import CriteriaEvaluator


@pytest.fixture
def context():
    ctx = ExecutionContext.seed({'expected': 'dog'})
    return ctx.for_exchange(
        url='https://petstore.example.com/pet/findByStatus',
        method='GET',
        status_code=200,
        response={
            'header': {'content-type': 'application/json', 'x-request-id': 'req-881'},
            'body': {'pets': [{'name': 'dog', 'status': 'available'}], 'xml': '<a><b>1</b></a>'},
        },
    )


class TestCriteriaLists:
    """AND semantics over ordered criteria."""

    def test_empty_or_absent_holds(self, context):
        evaluator = CriteriaEvaluator()
        assert evaluator.evaluate([], context) is True
        assert evaluator.evaluate(None, context) is True

    def test_all_must_hold(self, context):
        evaluator = CriteriaEvaluator()
        assert evaluator.evaluate([
            Criterion("$statusCode == 200"),
            Criterion("$response.body.pets[0].name == $inputs.expected"),
        ], context) is True
        assert evaluator.evaluate([
            Criterion("$statusCode == 200"),
            Criterion("$statusCode == 201"),
        ], context) is False

    def test_short_circuits_on_first_false(self, context):
        """Later criteria are not evaluated once one fails."""
        resolver = Mock()
        resolver.resolve.side_effect = [False, True]
        evaluator = CriteriaEvaluator(resolver=resolver)

        assert evaluator.evaluate([Criterion("$a"), Criterion("$b")], context) is False
        assert resolver.resolve.call_count == 1

    def test_dict_criteria_are_accepted(self, context):
        evaluator = CriteriaEvaluator()
        assert evaluator.evaluate([{'condition': '$statusCode == 200'}], context) is True


class TestDialects:

    def test_simple_is_strict(self, context):
        evaluator = CriteriaEvaluator()
        with pytest.raises(ExpressionSyntaxError):
            evaluator.evaluate_criterion(Criterion("status is 200"), context)

    def test_jsonpath_over_whole_context(self, context):
        evaluator = CriteriaEvaluator()
        criterion = Criterion("$.response.body.pets[?(@.status == 'available')]", type='jsonpath')
        assert evaluator.evaluate_criterion(criterion, context) is True

    def test_jsonpath_with_context_subject(self, context):
        evaluator = CriteriaEvaluator()
        hit = Criterion("$[?(@.name == 'dog')]", context="$response.body.pets", type='jsonpath')
        miss = Criterion("$[?(@.name == 'cat')]", context="$response.body.pets", type='jsonpath')
        assert evaluator.evaluate_criterion(hit, context) is True
        assert evaluator.evaluate_criterion(miss, context) is False

    def test_regex_searches_context_value(self, context):
        evaluator = CriteriaEvaluator()
        criterion = Criterion(r"^req-\d+$", context="$response.header.X-Request-Id", type='regex')
        assert evaluator.evaluate_criterion(criterion, context) is True

    def test_regex_on_status_code(self, context):
        evaluator = CriteriaEvaluator()
        assert evaluator.evaluate_criterion(Criterion("^2\\d\\d$", context="$statusCode", type='regex'), context)

    def test_regex_without_context_raises(self, context):
        evaluator = CriteriaEvaluator()
        with pytest.raises(MissingContextError):
            evaluator.evaluate_criterion(Criterion("^ok$", type='regex'), context)

    def test_invalid_regex_raises(self, context):
        evaluator = CriteriaEvaluator()
        with pytest.raises(PatternError):
            evaluator.evaluate_criterion(Criterion("([", context="$statusCode", type='regex'), context)

    def test_xpath_with_context(self, context):
        evaluator = CriteriaEvaluator()
        criterion = Criterion("//b[text()='1']", context="$response.body.xml", type='xpath')
        assert evaluator.evaluate_criterion(criterion, context) is True

    def test_xpath_uses_provider_when_no_context(self, context):
        provider = Mock(return_value='<pets><pet>dog</pet></pets>')
        evaluator = CriteriaEvaluator(xml_provider=provider)
        assert evaluator.evaluate_criterion(Criterion("//pet", type='xpath'), context) is True
        provider.assert_called_once_with(context)

    def test_xpath_without_document_raises(self, context):
        evaluator = CriteriaEvaluator()
        with pytest.raises(MissingContextError):
            evaluator.evaluate_criterion(Criterion("//pet", type='xpath'), context)

    def test_unknown_dialect_raises(self, context):
        evaluator = CriteriaEvaluator()
        with pytest.raises(UnsupportedDialectError):
            evaluator.evaluate_criterion(Criterion("$.a", type='jmespath'), context)
