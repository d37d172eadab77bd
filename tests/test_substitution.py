"""
Tests for embedded expression substitution and value stringification.
"""

import pytest

from apiflow.exceptions import UnknownRootError
from apiflow.expressions.references import UNDEFINED
from apiflow.expressions.substitution import TemplateSubstitutor, stringify


@pytest.fixture
def context():
    return {
        'inputs': {'user': 'ana', 'count': 3, 'active': True, 'tags': ['x']},
        'steps': {'create': {'outputs': {'id': 42}}},
    }


class TestEmbeddedRegions:

    def test_each_region_resolves_independently(self, context):
        substitutor = TemplateSubstitutor()
        text = "User {$inputs.user} has {$inputs.count} orders, last {$steps.create.outputs.id}"
        assert substitutor.substitute_embedded(text, context) == "User ana has 3 orders, last 42"

    def test_whitespace_inside_braces(self, context):
        substitutor = TemplateSubstitutor()
        assert substitutor.substitute_embedded("id={ $steps.create.outputs.id }", context) == "id=42"

    def test_missing_path_becomes_empty(self, context):
        substitutor = TemplateSubstitutor()
        assert substitutor.substitute_embedded("[{$inputs.none}]", context) == "[]"

    def test_malformed_pointer_becomes_empty(self, context):
        substitutor = TemplateSubstitutor()
        assert substitutor.substitute_embedded("[{$inputs.user#b}]", context) == "[]"

    def test_unknown_root_is_not_swallowed(self, context):
        substitutor = TemplateSubstitutor()
        with pytest.raises(UnknownRootError):
            substitutor.substitute_embedded("{$vault.secret}", context)

    def test_plain_braces_stay_literal(self, context):
        substitutor = TemplateSubstitutor()
        assert not substitutor.has_embedded('{"a": 1}')
        assert substitutor.substitute_embedded('{"a": 1}', context) == '{"a": 1}'


class TestStringify:

    def test_scalars(self):
        assert stringify(True) == 'true'
        assert stringify(False) == 'false'
        assert stringify(None) == ''
        assert stringify(UNDEFINED) == ''
        assert stringify(5.0) == '5'
        assert stringify(2.5) == '2.5'

    def test_containers_are_json(self):
        assert stringify({'a': [1, 2]}) == '{"a": [1, 2]}'
        assert stringify(('x',)) == '["x"]'
