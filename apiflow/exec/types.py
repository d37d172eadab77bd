"""
Type definitions for operation invocation.

Defines the operation, request and response records exchanged between the
invoker, the operation catalog and the HTTP client.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .cancellation import CancellationToken


DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRY_COUNT = 1
DEFAULT_RETRY_DELAY_MS = 1000


@dataclass
class Operation:
    """
    A callable remote operation.

    Attributes:
        operation_id: Operation identifier (None for path-addressed operations)
        url: URL template with {name} path placeholders
        method: HTTP method
        source: Name of the source description that declares it
        timeout_ms: Per-call timeout (None uses the engine default)
        retry_count: Transport-level retries (None uses the engine default)
        retry_delay_ms: Delay between transport-level retries
    """
    url: str
    method: str = "GET"
    operation_id: Optional[str] = None
    source: Optional[str] = None
    timeout_ms: Optional[int] = None
    retry_count: Optional[int] = None
    retry_delay_ms: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "Operation":
        return cls(
            url=data['url'],
            method=str(data.get('method') or 'GET').upper(),
            operation_id=data.get('operationId'),
            source=source,
            timeout_ms=data.get('timeout'),
            retry_count=data.get('retry'),
            retry_delay_ms=data.get('retryDelay'),
        )


@dataclass
class RequestOptions:
    """Options for a single HTTP call."""
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    content_type: Optional[str] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_count: int = DEFAULT_RETRY_COUNT
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    cancel_token: Optional[CancellationToken] = None


@dataclass
class HttpResponse:
    """Response returned by an HTTP client. Header names are lowercase."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    status_text: str = ""


@dataclass
class StepResult:
    """Result of invoking one step."""
    step_id: str
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    method: Optional[str] = None
    request: Dict[str, Any] = field(default_factory=dict)

    def response_parts(self) -> Dict[str, Any]:
        """Value exposed under ``$response``."""
        return {'header': dict(self.headers), 'body': self.body}
