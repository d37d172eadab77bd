"""
Typed document model.

Workflow documents arrive as parsed dictionaries (see loader.py). The engine
works on these dataclasses, built with ``from_dict``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import UnsupportedActionError


class Dialect(str, Enum):
    """Expression dialect of a criterion."""
    SIMPLE = "simple"
    JSONPATH = "jsonpath"
    XPATH = "xpath"
    REGEX = "regex"


class ActionType(str, Enum):
    END = "end"
    GOTO = "goto"
    RETRY = "retry"


class ParameterLocation(str, Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"


@dataclass
class Criterion:
    """A named condition evaluated against a step's result."""
    condition: str
    context: Optional[str] = None
    type: str = Dialect.SIMPLE.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Criterion":
        # Criterion type may be a bare name or an expression-type object
        criterion_type = data.get('type') or Dialect.SIMPLE.value
        if isinstance(criterion_type, dict):
            criterion_type = criterion_type.get('type', Dialect.SIMPLE.value)
        return cls(
            condition=data['condition'],
            context=data.get('context'),
            type=str(criterion_type),
        )


@dataclass
class Action:
    """Base of the closed End | Goto | Retry action variant."""
    name: Optional[str] = None
    criteria: List[Criterion] = field(default_factory=list)


@dataclass
class EndAction(Action):
    pass


@dataclass
class GotoAction(Action):
    step_id: str = ""


@dataclass
class RetryAction(Action):
    """
    Re-run the current step.

    Attributes:
        retry_limit: Maximum retries of the step for the whole run
        retry_after: Delay before the retry, in seconds
    """
    retry_limit: int = 1
    retry_after: float = 0


def action_from_dict(data: Dict[str, Any]) -> Action:
    """
    Build an action from its document form.

    Raises:
        UnsupportedActionError: If the action type is not end, goto or retry
    """
    action_type = data.get('type')
    name = data.get('name')
    criteria = [Criterion.from_dict(c) for c in data.get('criteria') or []]

    if action_type == ActionType.END.value:
        return EndAction(name=name, criteria=criteria)
    if action_type == ActionType.GOTO.value:
        return GotoAction(name=name, criteria=criteria, step_id=data.get('stepId', ''))
    if action_type == ActionType.RETRY.value:
        return RetryAction(
            name=name,
            criteria=criteria,
            retry_limit=int(data.get('retryLimit', 1)),
            retry_after=float(data.get('retryAfter', 0)),
        )
    raise UnsupportedActionError(
        f"Unsupported action type: {action_type}",
        {'action': name, 'type': action_type},
    )


@dataclass
class Parameter:
    name: str
    value: Any
    location: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Parameter":
        return cls(name=data['name'], value=data.get('value'), location=data.get('in'))


@dataclass
class PayloadReplacement:
    target: str
    value: Any


@dataclass
class RequestBody:
    payload: Any = None
    content_type: Optional[str] = None
    replacements: List[PayloadReplacement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestBody":
        return cls(
            payload=data.get('payload'),
            content_type=data.get('contentType'),
            replacements=[
                PayloadReplacement(target=r['target'], value=r.get('value'))
                for r in data.get('replacements') or []
            ],
        )


@dataclass
class Step:
    """A single workflow step targeting exactly one operation or workflow."""
    step_id: str
    operation_id: Optional[str] = None
    operation_path: Optional[str] = None
    workflow_id: Optional[str] = None
    description: Optional[str] = None
    parameters: List[Parameter] = field(default_factory=list)
    request_body: Optional[RequestBody] = None
    success_criteria: List[Criterion] = field(default_factory=list)
    on_success: List[Action] = field(default_factory=list)
    on_failure: List[Action] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        request_body = data.get('requestBody')
        return cls(
            step_id=data['stepId'],
            operation_id=data.get('operationId'),
            operation_path=data.get('operationPath'),
            workflow_id=data.get('workflowId'),
            description=data.get('description'),
            parameters=[Parameter.from_dict(p) for p in data.get('parameters') or []],
            request_body=RequestBody.from_dict(request_body) if request_body else None,
            success_criteria=[Criterion.from_dict(c) for c in data.get('successCriteria') or []],
            on_success=[action_from_dict(a) for a in data.get('onSuccess') or []],
            on_failure=[action_from_dict(a) for a in data.get('onFailure') or []],
            outputs=dict(data.get('outputs') or {}),
        )


@dataclass
class Workflow:
    workflow_id: str
    steps: List[Step]
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    parameters: List[Parameter] = field(default_factory=list)
    success_actions: List[Action] = field(default_factory=list)
    failure_actions: List[Action] = field(default_factory=list)
    summary: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        return cls(
            workflow_id=data['workflowId'],
            steps=[Step.from_dict(s) for s in data.get('steps') or []],
            inputs=dict(data.get('inputs') or {}),
            outputs=dict(data.get('outputs') or {}),
            parameters=[Parameter.from_dict(p) for p in data.get('parameters') or []],
            success_actions=[action_from_dict(a) for a in data.get('successActions') or []],
            failure_actions=[action_from_dict(a) for a in data.get('failureActions') or []],
            summary=data.get('summary'),
        )

    def step_index(self, step_id: str) -> Optional[int]:
        for index, step in enumerate(self.steps):
            if step.step_id == step_id:
                return index
        return None

    def input_defaults(self) -> Dict[str, Any]:
        """Defaults declared in the input schema's properties."""
        properties = self.inputs.get('properties') or {}
        return {
            name: schema['default']
            for name, schema in properties.items()
            if isinstance(schema, dict) and 'default' in schema
        }


@dataclass
class SourceDescription:
    """
    A named API source.

    Attributes:
        name: Source name used in operation qualifiers and expressions
        url: Location of the API description
        type: Description type (openapi or arazzo)
        operations: Inline operation list ({operationId, method, url, ...})
        document: Parsed OpenAPI description, when available
    """
    name: str
    url: Optional[str] = None
    type: str = "openapi"
    operations: List[Dict[str, Any]] = field(default_factory=list)
    document: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceDescription":
        return cls(
            name=data['name'],
            url=data.get('url'),
            type=data.get('type', 'openapi'),
            operations=list(data.get('operations') or []),
            document=data.get('document'),
        )

    def to_context(self) -> Dict[str, Any]:
        """Value exposed under ``$sourceDescriptions.<name>``."""
        result: Dict[str, Any] = {'name': self.name, 'url': self.url, 'type': self.type}
        if self.document is not None:
            result.update({k: v for k, v in self.document.items() if k not in result})
        return result


@dataclass
class WorkflowDocument:
    """A parsed workflow document."""
    source_descriptions: List[SourceDescription]
    workflow_data: List[Dict[str, Any]]
    info: Dict[str, Any] = field(default_factory=dict)
    components: Dict[str, Any] = field(default_factory=dict)
    version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDocument":
        return cls(
            source_descriptions=[
                SourceDescription.from_dict(s) for s in data.get('sourceDescriptions') or []
            ],
            workflow_data=list(data.get('workflows') or []),
            info=dict(data.get('info') or {}),
            components=dict(data.get('components') or {}),
            version=data.get('arazzo'),
        )

    def workflow_ids(self) -> List[str]:
        return [w.get('workflowId') for w in self.workflow_data]

    def get_workflow(self, workflow_id: Optional[str] = None) -> Optional[Workflow]:
        """
        Build the workflow with the given id, or the first one when id is None.

        Actions are built here, so an unsupported action type surfaces as
        UnsupportedActionError when the workflow is first run.
        """
        for data in self.workflow_data:
            if workflow_id is None or data.get('workflowId') == workflow_id:
                return Workflow.from_dict(data)
        return None

    def source_context(self) -> Dict[str, Any]:
        return {source.name: source.to_context() for source in self.source_descriptions}
