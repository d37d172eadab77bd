"""Workflow document loader and strict structural validation."""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union
import yaml

from apiflow.exceptions import ValidationError, WorkflowValidationError


BOOL_TAG = 'tag:yaml.org,2002:bool'


class StrictBoolLoader(yaml.SafeLoader):
    """YAML loader that only reads true/false as booleans.

    Parameter values such as ``yes``, ``no``, ``on`` and ``off`` stay strings.
    """
    pass


StrictBoolLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp) for tag, regexp in resolvers
        if not (tag == BOOL_TAG and first not in 'tTfF')
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class WorkflowLoader:
    """Loads and validates workflow documents with strict structure enforcement."""

    VERSION_PATTERN = re.compile(r'^1\.0\.\d+(-.+)?$')
    ID_PATTERN = re.compile(r'^[A-Za-z0-9_\-]+$')

    TOP_LEVEL_FIELDS = {'arazzo', 'info', 'sourceDescriptions', 'workflows', 'components'}
    SOURCE_TYPES = {'openapi', 'arazzo'}
    TARGET_FIELDS = ('operationId', 'operationPath', 'workflowId')
    PARAMETER_LOCATIONS = {'path', 'query', 'header', 'cookie'}
    CRITERION_TYPES = {'simple', 'regex', 'jsonpath', 'xpath'}
    ACTION_TYPES = {'end', 'goto', 'retry'}

    def __init__(self, base_dir: Optional[Path] = None):
        """Initialize loader; relative source files resolve against base_dir."""
        self.base_dir = Path(base_dir).resolve() if base_dir else None
        self.errors: List[ValidationError] = []

    def load(self, document_path: Union[str, Path]) -> Dict[str, Any]:
        """Load, validate and return a workflow document from YAML or JSON."""
        document_path = Path(document_path)
        try:
            with open(document_path, 'r') as f:
                document = yaml.load(f, Loader=StrictBoolLoader)
        except (OSError, yaml.YAMLError) as e:
            self._add_error(f"Failed to load workflow document: {e}")
            self._raise_validation_errors()

        if self.base_dir is None:
            self.base_dir = document_path.resolve().parent

        return self.load_document(document)

    def load_document(self, document: Any) -> Dict[str, Any]:
        """Validate an already parsed document and load local source descriptions."""
        self.errors = []

        if document is None or not isinstance(document, dict):
            self._add_error("Workflow document must be a YAML/JSON object")
            self._raise_validation_errors()

        self._validate_top_level(document)
        self._validate_sources(document.get('sourceDescriptions'))

        workflows = document.get('workflows')
        if not isinstance(workflows, list) or not workflows:
            self._add_error("'workflows' is required and must be a non-empty list", "workflows")
        else:
            self._validate_workflows(workflows)

        if self.errors:
            self._raise_validation_errors()

        self._load_local_sources(document.get('sourceDescriptions') or [])
        if self.errors:
            self._raise_validation_errors()

        return document

    def _validate_top_level(self, document: Dict[str, Any]):
        """Validate version, info and unknown top-level fields."""
        for key in document.keys():
            if key not in self.TOP_LEVEL_FIELDS and not str(key).startswith('x-'):
                self._add_error(f"Unknown field '{key}'", str(key))

        version = document.get('arazzo')
        if not version:
            self._add_error("'arazzo' version field is required", "arazzo")
        elif not isinstance(version, str) or not self.VERSION_PATTERN.match(version):
            self._add_error(f"Unsupported version '{version}'. Supported: 1.0.x", "arazzo")

        info = document.get('info')
        if not isinstance(info, dict):
            self._add_error("'info' is required and must be an object", "info")
        else:
            for field in ('title', 'version'):
                if not isinstance(info.get(field), str) or not info.get(field):
                    self._add_error(f"'info.{field}' is required", f"info.{field}")

    def _validate_sources(self, sources: Any):
        """Validate source descriptions."""
        if not isinstance(sources, list) or not sources:
            self._add_error("'sourceDescriptions' is required and must be a non-empty list", "sourceDescriptions")
            return

        names: Set[str] = set()
        for i, source in enumerate(sources):
            path = f"sourceDescriptions[{i}]"
            if not isinstance(source, dict):
                self._add_error("Source description must be an object", path)
                continue

            name = source.get('name')
            if not isinstance(name, str) or not self.ID_PATTERN.match(name):
                self._add_error(f"Invalid source description name '{name}'", f"{path}.name")
            elif name in names:
                self._add_error(f"Duplicate source description name '{name}'", f"{path}.name")
            else:
                names.add(name)

            if not isinstance(source.get('url'), str) or not source.get('url'):
                self._add_error("Source description 'url' is required", f"{path}.url")

            source_type = source.get('type', 'openapi')
            if source_type not in self.SOURCE_TYPES:
                self._add_error(f"Source type must be 'arazzo' or 'openapi', got '{source_type}'", f"{path}.type")

            if 'operations' in source and not isinstance(source['operations'], list):
                self._add_error("Source 'operations' must be a list", f"{path}.operations")

    def _validate_workflows(self, workflows: List[Any]):
        """Validate workflow definitions."""
        workflow_ids: Set[str] = set()
        for workflow in workflows:
            if isinstance(workflow, dict) and isinstance(workflow.get('workflowId'), str):
                workflow_ids.add(workflow['workflowId'])

        seen: Set[str] = set()
        for i, workflow in enumerate(workflows):
            path = f"workflows[{i}]"
            if not isinstance(workflow, dict):
                self._add_error("Workflow must be an object", path)
                continue

            workflow_id = workflow.get('workflowId')
            if not isinstance(workflow_id, str) or not self.ID_PATTERN.match(workflow_id):
                self._add_error(f"Invalid workflow ID '{workflow_id}'", f"{path}.workflowId")
            elif workflow_id in seen:
                self._add_error(f"Duplicate workflow ID '{workflow_id}'", f"{path}.workflowId")
            else:
                seen.add(workflow_id)

            inputs = workflow.get('inputs')
            if inputs is not None and not isinstance(inputs, dict):
                self._add_error("Workflow 'inputs' must be a schema object", f"{path}.inputs")

            steps = workflow.get('steps')
            if not isinstance(steps, list) or not steps:
                self._add_error("At least one step is required", f"{path}.steps")
                continue

            step_ids = self._validate_steps(steps, path, workflow_ids)
            self._validate_parameters(workflow.get('parameters'), f"{path}.parameters", True)
            self._validate_actions(workflow.get('successActions'), f"{path}.successActions", step_ids, allow_retry=False)
            self._validate_actions(workflow.get('failureActions'), f"{path}.failureActions", step_ids, allow_retry=True)

    def _validate_steps(self, steps: List[Any], path: str, workflow_ids: Set[str]) -> Set[str]:
        """Validate step definitions and return the step ids."""
        step_ids: Set[str] = set()
        for step in steps:
            if isinstance(step, dict) and isinstance(step.get('stepId'), str):
                step_ids.add(step['stepId'])

        seen: Set[str] = set()
        for i, step in enumerate(steps):
            step_path = f"{path}.steps[{i}]"
            if not isinstance(step, dict):
                self._add_error("Step must be an object", step_path)
                continue

            step_id = step.get('stepId')
            if not isinstance(step_id, str) or not self.ID_PATTERN.match(step_id):
                self._add_error(f"Invalid step ID format '{step_id}'", f"{step_path}.stepId")
            elif step_id in seen:
                self._add_error(f"Duplicate step ID '{step_id}'", f"{step_path}.stepId")
            else:
                seen.add(step_id)

            # Exactly one target
            provided = [f for f in self.TARGET_FIELDS if step.get(f) is not None]
            if not provided:
                self._add_error("One of operationId, operationPath, or workflowId must be provided", step_path)
            elif len(provided) > 1:
                self._add_error(f"operationId, operationPath, and workflowId are mutually exclusive, found {provided}", step_path)
            elif provided[0] == 'workflowId' and step['workflowId'] not in workflow_ids:
                self._add_error(f"Step references unknown workflow '{step['workflowId']}'", f"{step_path}.workflowId")

            targets_workflow = 'workflowId' in provided
            self._validate_parameters(step.get('parameters'), f"{step_path}.parameters", not targets_workflow)

            request_body = step.get('requestBody')
            if request_body is not None:
                if not isinstance(request_body, dict):
                    self._add_error("'requestBody' must be an object", f"{step_path}.requestBody")
                elif 'contentType' in request_body and not request_body['contentType']:
                    self._add_error("Content-Type is required", f"{step_path}.requestBody.contentType")

            self._validate_criteria(step.get('successCriteria'), f"{step_path}.successCriteria")

            outputs = step.get('outputs')
            if outputs is not None and not isinstance(outputs, dict):
                self._add_error("'outputs' must be a map", f"{step_path}.outputs")

        for i, step in enumerate(steps):
            if not isinstance(step, dict):
                continue
            step_path = f"{path}.steps[{i}]"
            self._validate_actions(step.get('onSuccess'), f"{step_path}.onSuccess", step_ids, allow_retry=False)
            self._validate_actions(step.get('onFailure'), f"{step_path}.onFailure", step_ids, allow_retry=True)

        return step_ids

    def _validate_parameters(self, parameters: Any, path: str, location_required: bool):
        if parameters is None:
            return
        if not isinstance(parameters, list):
            self._add_error("'parameters' must be a list", path)
            return

        for i, parameter in enumerate(parameters):
            parameter_path = f"{path}[{i}]"
            if not isinstance(parameter, dict):
                self._add_error("Parameter must be an object", parameter_path)
                continue
            if not parameter.get('name'):
                self._add_error("Parameter name is required", f"{parameter_path}.name")
            location = parameter.get('in')
            if location is None:
                if location_required:
                    self._add_error("Parameter 'in' is required", f"{parameter_path}.in")
            elif location not in self.PARAMETER_LOCATIONS:
                self._add_error(
                    f"Parameter 'in' must be one of {sorted(self.PARAMETER_LOCATIONS)}, got '{location}'",
                    f"{parameter_path}.in",
                )

    def _validate_criteria(self, criteria: Any, path: str):
        if criteria is None:
            return
        if not isinstance(criteria, list):
            self._add_error("Criteria must be a list", path)
            return

        for i, criterion in enumerate(criteria):
            criterion_path = f"{path}[{i}]"
            if not isinstance(criterion, dict):
                self._add_error("Criterion must be an object", criterion_path)
                continue
            if not isinstance(criterion.get('condition'), str) or not criterion['condition']:
                self._add_error("Condition is required", f"{criterion_path}.condition")

            criterion_type = criterion.get('type', 'simple')
            if isinstance(criterion_type, dict):
                criterion_type = criterion_type.get('type')
            if criterion_type not in self.CRITERION_TYPES:
                self._add_error(
                    f"Criterion type must be one of {sorted(self.CRITERION_TYPES)}, got '{criterion_type}'",
                    f"{criterion_path}.type",
                )
            elif criterion_type == 'regex' and not criterion.get('context'):
                self._add_error("Regex criteria require a 'context'", f"{criterion_path}.context")

    def _validate_actions(self, actions: Any, path: str, step_ids: Set[str], allow_retry: bool):
        """Validate success/failure actions and their goto targets."""
        if actions is None:
            return
        if not isinstance(actions, list):
            self._add_error("Actions must be a list", path)
            return

        for i, action in enumerate(actions):
            action_path = f"{path}[{i}]"
            if not isinstance(action, dict):
                self._add_error("Action must be an object", action_path)
                continue

            action_type = action.get('type')
            if action_type not in self.ACTION_TYPES:
                self._add_error(
                    f"Action type must be one of {sorted(self.ACTION_TYPES)}, got '{action_type}'",
                    f"{action_path}.type",
                )
                continue

            if action_type == 'goto':
                target = action.get('stepId')
                if not target:
                    self._add_error("Goto action requires 'stepId'", f"{action_path}.stepId")
                elif target not in step_ids:
                    self._add_error(f"Goto references unknown step '{target}'", f"{action_path}.stepId")

            if action_type == 'retry':
                if not allow_retry:
                    self._add_error("Retry actions are not allowed on success", f"{action_path}.type")
                for field in ('retryLimit', 'retryAfter'):
                    value = action.get(field)
                    if value is None:
                        continue
                    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                        self._add_error(f"'{field}' must be a non-negative number", f"{action_path}.{field}")

            self._validate_criteria(action.get('criteria'), f"{action_path}.criteria")

    def _load_local_sources(self, sources: List[Dict[str, Any]]):
        """Attach parsed API descriptions for sources stored as local files."""
        for i, source in enumerate(sources):
            url = source.get('url', '')
            if 'document' in source or 'operations' in source or re.match(r'^[A-Za-z][A-Za-z0-9+.\-]*://', url):
                continue

            source_path = Path(url)
            if not source_path.is_absolute():
                source_path = (self.base_dir or Path.cwd()) / source_path
            if not source_path.exists():
                self._add_error(f"Source description file not found: {url}", f"sourceDescriptions[{i}].url")
                continue

            try:
                with open(source_path, 'r') as f:
                    source['document'] = yaml.load(f, Loader=StrictBoolLoader)
            except (OSError, yaml.YAMLError) as e:
                self._add_error(f"Failed to load source description '{url}': {e}", f"sourceDescriptions[{i}].url")

    def _add_error(self, message: str, path: str = "", exit_code: int = 2):
        """Add validation error."""
        self.errors.append(ValidationError(message, path, exit_code))

    def _raise_validation_errors(self):
        """Raise WorkflowValidationError with accumulated errors."""
        raise WorkflowValidationError(self.errors)
