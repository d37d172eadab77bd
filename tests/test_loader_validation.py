"""Tests for workflow document loading and structural validation."""

import copy
import json
import shutil
import tempfile
from pathlib import Path

import pytest
import yaml

from apiflow.exceptions import WorkflowValidationError
from apiflow.loader import StrictBoolLoader, WorkflowLoader

from conftest import make_document


BASE_WORKFLOW = {
    'workflowId': 'findPets',
    'steps': [
        {
            'stepId': 'login',
            'operationId': 'loginUser',
            'parameters': [{'name': 'username', 'in': 'query', 'value': '$inputs.username'}],
            'successCriteria': [{'condition': '$statusCode == 200'}],
            'onFailure': [{'type': 'retry', 'retryLimit': 3, 'retryAfter': 1}],
            'outputs': {'token': '$response.body.token'},
        },
        {
            'stepId': 'find',
            'operationId': 'findPets',
            'onSuccess': [{'type': 'goto', 'stepId': 'login', 'criteria': [{'condition': '$statusCode == 401'}]}],
        },
    ],
}


class TestLoaderValidation:
    """Strict validation of workflow documents."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.workspace = Path(self.temp_dir)
        self.loader = WorkflowLoader(self.workspace)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_document(self, content: dict, name: str = "workflow.yml") -> Path:
        path = self.workspace / name
        with open(path, 'w') as f:
            yaml.dump(content, f)
        return path

    def assert_invalid(self, document: dict, fragment: str):
        with pytest.raises(WorkflowValidationError) as exc_info:
            self.loader.load_document(document)
        assert exc_info.value.exit_code == 2
        messages = [err.message for err in exc_info.value.errors]
        assert any(fragment in message for message in messages), messages
        return exc_info.value

    def test_valid_document_loads(self):
        path = self.write_document(make_document([copy.deepcopy(BASE_WORKFLOW)]))
        document = self.loader.load(path)
        assert document['workflows'][0]['workflowId'] == 'findPets'

    def test_json_document_loads(self):
        path = self.workspace / "workflow.json"
        path.write_text(json.dumps(make_document([copy.deepcopy(BASE_WORKFLOW)])))
        assert self.loader.load(path)['arazzo'] == '1.0.0'

    def test_unsupported_version(self):
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        document['arazzo'] = '2.0.0'
        self.assert_invalid(document, "Unsupported version")

    def test_info_title_required(self):
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        del document['info']['title']
        error = self.assert_invalid(document, "'info.title' is required")
        assert any(err.path == 'info.title' for err in error.errors)

    def test_unknown_top_level_field(self):
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        document['servers'] = []
        document['x-owner'] = 'team'
        error = self.assert_invalid(document, "Unknown field 'servers'")
        assert not any('x-owner' in err.message for err in error.errors)

    def test_invalid_source_type(self):
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        document['sourceDescriptions'][0]['type'] = 'graphql'
        self.assert_invalid(document, "Source type must be 'arazzo' or 'openapi'")

    def test_invalid_workflow_id(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['workflowId'] = 'find pets'
        self.assert_invalid(make_document([workflow]), "Invalid workflow ID")

    def test_duplicate_step_ids(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][1]['stepId'] = 'login'
        self.assert_invalid(make_document([workflow]), "Duplicate step ID 'login'")

    def test_step_needs_exactly_one_target(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['operationPath'] = '{$sourceDescriptions.petStore.url}#/paths/~1user~1login/get'
        self.assert_invalid(make_document([workflow]), "mutually exclusive")

        workflow = copy.deepcopy(BASE_WORKFLOW)
        del workflow['steps'][0]['operationId']
        self.assert_invalid(make_document([workflow]), "must be provided")

    def test_unknown_nested_workflow(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][1] = {'stepId': 'nested', 'workflowId': 'missing'}
        self.assert_invalid(make_document([workflow]), "unknown workflow 'missing'")

    def test_parameter_location(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['parameters'][0]['in'] = 'body'
        self.assert_invalid(make_document([workflow]), "Parameter 'in' must be one of")

        workflow = copy.deepcopy(BASE_WORKFLOW)
        del workflow['steps'][0]['parameters'][0]['in']
        self.assert_invalid(make_document([workflow]), "Parameter 'in' is required")

    def test_criterion_type(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['successCriteria'] = [{'condition': '$.a', 'type': 'jmespath'}]
        self.assert_invalid(make_document([workflow]), "Criterion type must be one of")

    def test_regex_criterion_requires_context(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['successCriteria'] = [{'condition': '^2', 'type': 'regex'}]
        self.assert_invalid(make_document([workflow]), "Regex criteria require a 'context'")

    def test_expression_type_object_is_accepted(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['successCriteria'] = [
            {'condition': '$[?(@.ok)]', 'context': '$response.body',
             'type': {'type': 'jsonpath', 'version': 'draft-goessner-dispatch-jsonpath-00'}},
        ]
        self.loader.load_document(make_document([workflow]))

    def test_goto_target_must_exist(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][1]['onSuccess'][0]['stepId'] = 'nowhere'
        self.assert_invalid(make_document([workflow]), "Goto references unknown step 'nowhere'")

    def test_retry_not_allowed_on_success(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][1]['onSuccess'] = [{'type': 'retry'}]
        self.assert_invalid(make_document([workflow]), "Retry actions are not allowed on success")

    def test_negative_retry_limit(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['onFailure'][0]['retryLimit'] = -1
        self.assert_invalid(make_document([workflow]), "'retryLimit' must be a non-negative number")

    def test_unknown_action_type(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['onFailure'] = [{'type': 'pause'}]
        self.assert_invalid(make_document([workflow]), "Action type must be one of")

    def test_errors_are_collected(self):
        workflow = copy.deepcopy(BASE_WORKFLOW)
        workflow['steps'][0]['stepId'] = 'bad id'
        workflow['steps'][1]['onSuccess'][0]['stepId'] = 'nowhere'
        document = make_document([workflow])
        document['arazzo'] = '0.9'

        with pytest.raises(WorkflowValidationError) as exc_info:
            self.loader.load_document(document)
        assert len(exc_info.value.errors) >= 3

    def test_unreadable_yaml(self):
        path = self.workspace / "broken.yml"
        path.write_text("workflows: [unclosed")
        with pytest.raises(WorkflowValidationError) as exc_info:
            self.loader.load(path)
        assert "Failed to load workflow document" in exc_info.value.errors[0].message


class TestLocalSources:
    """Source descriptions stored next to the workflow document."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.workspace = Path(self.temp_dir)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_relative_openapi_file_is_attached(self):
        (self.workspace / "petstore.yml").write_text(yaml.dump({
            'openapi': '3.0.3',
            'paths': {'/pet': {'get': {'operationId': 'listPets'}}},
        }))
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        source = document['sourceDescriptions'][0]
        source['url'] = 'petstore.yml'
        del source['operations']
        path = self.workspace / "workflow.yml"
        path.write_text(yaml.dump(document))

        loaded = WorkflowLoader().load(path)
        assert loaded['sourceDescriptions'][0]['document']['paths']['/pet']['get']['operationId'] == 'listPets'

    def test_missing_local_file(self):
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        source = document['sourceDescriptions'][0]
        source['url'] = 'missing.yml'
        del source['operations']

        with pytest.raises(WorkflowValidationError) as exc_info:
            WorkflowLoader(self.workspace).load_document(document)
        assert "Source description file not found" in exc_info.value.errors[0].message

    def test_remote_sources_are_not_fetched(self):
        document = make_document([copy.deepcopy(BASE_WORKFLOW)])
        del document['sourceDescriptions'][0]['operations']
        loaded = WorkflowLoader(self.workspace).load_document(document)
        assert 'document' not in loaded['sourceDescriptions'][0]


class TestStrictBoolLoader:

    def test_only_true_false_are_booleans(self):
        data = yaml.load("a: yes\nb: on\nc: true\nd: False\ne: no", Loader=StrictBoolLoader)
        assert data == {'a': 'yes', 'b': 'on', 'c': True, 'd': False, 'e': 'no'}
