"""Tests for the apiflow command line."""

import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from apiflow.cli.commands.run import parse_inputs
from apiflow.cli.main import create_parser, main
from apiflow.exceptions import ProtocolError

from conftest import ScriptedHttpClient, json_response, make_document


LOGIN_URL = 'https://petstore.example.com/user/login'

WORKFLOW = {
    'workflowId': 'login',
    'steps': [{
        'stepId': 'login',
        'operationId': 'loginUser',
        'parameters': [{'name': 'username', 'in': 'query', 'value': '$inputs.username'}],
        'successCriteria': [{'condition': '$statusCode == 200'}],
        'outputs': {'token': '$response.body.token'},
    }],
    'outputs': {'token': '$steps.login.outputs.token'},
}


class TestRunCommand:
    """End-to-end runs through main() with the HTTP client patched out."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.workspace = Path(self.temp_dir)
        self.http_client = ScriptedHttpClient()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_document(self, document: dict) -> Path:
        path = self.workspace / "workflow.yml"
        with open(path, 'w') as f:
            yaml.dump(document, f)
        return path

    def run_cli(self, argv):
        with patch('apiflow.cli.commands.run.HttpxClient') as client_class:
            client_class.return_value.__enter__.return_value = self.http_client
            return main(argv)

    def test_successful_run_prints_result(self, capsys):
        self.http_client.add('GET', LOGIN_URL, json_response(200, {'token': 'abc123'}))
        path = self.write_document(make_document([WORKFLOW]))

        exit_code = self.run_cli(['run', str(path), '--input', 'username=ana'])

        assert exit_code == 0
        output = json.loads(capsys.readouterr().out)
        assert output['status'] == 'succeeded'
        assert output['outputs'] == {'token': 'abc123'}
        assert self.http_client.calls[0]['options'].query == {'username': 'ana'}

    def test_failed_run_exits_one(self, capsys):
        self.http_client.add('GET', LOGIN_URL, ProtocolError('GET', LOGIN_URL, 500, 'Internal Server Error'))
        path = self.write_document(make_document([WORKFLOW]))

        exit_code = self.run_cli(['run', str(path), '--retry-count', '0'])

        assert exit_code == 1
        output = json.loads(capsys.readouterr().out)
        assert output['status'] == 'failed'
        assert output['error']['type'] == 'FetchError'

    def test_validation_error_exits_two(self):
        document = make_document([WORKFLOW])
        document['arazzo'] = '3.1.0'
        path = self.write_document(document)

        assert self.run_cli(['run', str(path)]) == 2
        assert self.http_client.calls == []

    def test_missing_document_exits_two(self):
        assert self.run_cli(['run', str(self.workspace / 'nope.yml')]) == 2

    def test_unknown_workflow_id_exits_two(self):
        path = self.write_document(make_document([WORKFLOW]))
        assert self.run_cli(['run', str(path), '--workflow-id', 'other']) == 2

    def test_dry_run_does_not_call(self):
        path = self.write_document(make_document([WORKFLOW]))
        assert self.run_cli(['run', str(path), '--dry-run']) == 0
        assert self.http_client.calls == []

    def test_expired_timeout_exits_three(self, capsys):
        path = self.write_document(make_document([WORKFLOW]))
        assert self.run_cli(['run', str(path), '--timeout', '0']) == 3
        assert json.loads(capsys.readouterr().out)['status'] == 'cancelled'

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 2
        assert 'usage' in capsys.readouterr().out


class TestParseInputs:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.workspace = Path(self.temp_dir)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_values_are_yaml_scalars(self):
        args = create_parser().parse_args([
            'run', 'doc.yml', '--input', 'limit=10', '--input', 'flag=true',
            '--input', 'answer=yes', '--input', 'name=', '--input', 'expr=a=b',
        ])
        assert parse_inputs(args) == {'limit': 10, 'flag': True, 'answer': 'yes', 'name': '', 'expr': 'a=b'}

    def test_flags_override_file(self):
        inputs_file = self.workspace / 'inputs.json'
        inputs_file.write_text(json.dumps({'username': 'ana', 'limit': 5}))
        args = create_parser().parse_args([
            'run', 'doc.yml', '--inputs-file', str(inputs_file), '--input', 'limit=7',
        ])
        assert parse_inputs(args) == {'username': 'ana', 'limit': 7}

    def test_invalid_flag(self):
        args = create_parser().parse_args(['run', 'doc.yml', '--input', 'novalue'])
        with pytest.raises(ValueError):
            parse_inputs(args)

    def test_inputs_file_must_be_object(self):
        inputs_file = self.workspace / 'inputs.yml'
        inputs_file.write_text('- a\n- b\n')
        args = create_parser().parse_args(['run', 'doc.yml', '--inputs-file', str(inputs_file)])
        with pytest.raises(ValueError):
            parse_inputs(args)
