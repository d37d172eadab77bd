"""Execution context for a single workflow run.

The context is a record with a fixed set of roots. Runtime expressions such
as ``$steps.login.outputs.token`` address it by root name. One run owns its
context exclusively: ``inputs`` is sealed when the run starts, ``steps``
grows as steps complete, and the exchange roots (``url``, ``method``,
``statusCode``, ``request``, ``response``) describe the most recent call.
"""

import copy
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


ROOTS = (
    'url', 'method', 'statusCode', 'request', 'response', 'inputs',
    'outputs', 'steps', 'workflows', 'sourceDescriptions', 'components',
)

# Expression root names that differ from the attribute holding them
ROOT_ATTRIBUTES = {
    'statusCode': 'status_code',
    'sourceDescriptions': 'source_descriptions',
}


def seal_inputs(inputs: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Return a read-only view over a deep copy of the caller's inputs."""
    return MappingProxyType(copy.deepcopy(dict(inputs or {})))


def to_plain(value: Any) -> Any:
    """Convert read-only mappings and tuples into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def lower_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Store header names lowercase so lookups are case-insensitive."""
    return {str(k).lower(): v for k, v in (headers or {}).items()}


@dataclass
class ExecutionContext:
    """Layered execution context for one workflow run."""
    inputs: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    steps: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    workflows: Dict[str, Any] = field(default_factory=dict)
    source_descriptions: Dict[str, Any] = field(default_factory=dict)
    components: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = None
    request: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None
    # Workflow ids of the enclosing runs, outermost first
    workflow_chain: Tuple[str, ...] = ()

    @classmethod
    def seed(
        cls,
        inputs: Optional[Mapping[str, Any]] = None,
        source_descriptions: Optional[Dict[str, Any]] = None,
        components: Optional[Dict[str, Any]] = None,
        workflows: Optional[Dict[str, Any]] = None
    ) -> "ExecutionContext":
        """Create the context for a new run with sealed inputs and static roots."""
        return cls(
            inputs=seal_inputs(inputs),
            source_descriptions=dict(source_descriptions or {}),
            components=dict(components or {}),
            workflows=workflows if workflows is not None else {},
        )

    def get_root(self, name: str) -> Any:
        """Return the value held under an expression root name."""
        return getattr(self, ROOT_ATTRIBUTES.get(name, name))

    def record_step(self, step_id: str, outputs: Dict[str, Any]) -> None:
        """Write a step's outputs. Re-running a step overwrites its entry."""
        self.steps[step_id] = {'outputs': dict(outputs)}

    def for_exchange(
        self,
        url: Optional[str] = None,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        request: Optional[Dict[str, Any]] = None,
        response: Optional[Dict[str, Any]] = None,
        outputs: Optional[Dict[str, Any]] = None
    ) -> "ExecutionContext":
        """
        Return a view extended with one call's exchange roots.

        The view shares ``steps``, ``inputs``, ``workflows`` and the static
        roots with this context, so writes through either are visible to both.

        Args:
            url: Resolved request URL
            method: HTTP method used
            status_code: Response status code
            request: Request parts as {header, query, path, body}
            response: Response parts as {header, body}
            outputs: Replaces ``$outputs`` for the view (nested workflow steps)
        """
        changes: Dict[str, Any] = {
            'url': url,
            'method': method,
            'status_code': status_code,
            'request': request,
            'response': response,
        }
        if outputs is not None:
            changes['outputs'] = outputs
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Plain tree keyed by root name, used for structured queries."""
        result: Dict[str, Any] = {}
        for name in ROOTS:
            value = self.get_root(name)
            if value is not None:
                result[name] = to_plain(value)
        return result
