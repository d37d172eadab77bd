"""
Execution module for apiflow.
Handles operation lookup, HTTP calls, retries and cancellation.
"""

from .cancellation import CancellationToken
from .catalog import OperationCatalog
from .http_client import HttpxClient
from .invoker import OperationInvoker
from .retry import RetryPolicy
from .types import HttpResponse, Operation, RequestOptions, StepResult

__all__ = [
    "CancellationToken",
    "OperationCatalog",
    "HttpxClient",
    "OperationInvoker",
    "RetryPolicy",
    "HttpResponse",
    "Operation",
    "RequestOptions",
    "StepResult",
]
