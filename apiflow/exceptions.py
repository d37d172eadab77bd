"""apiflow exceptions."""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass


@dataclass
class ValidationError:
    """Single validation error."""
    message: str
    path: str = ""
    exit_code: int = 2


class WorkflowValidationError(Exception):
    """Raised when a workflow document fails validation.

    This exception is raised by the loader when validation errors occur,
    allowing the CLI to catch it and map to appropriate exit codes.
    """

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        self.exit_code = 2  # Default validation exit code

        messages = []
        for error in errors:
            if error.path:
                messages.append(f"Validation error at {error.path}: {error.message}")
            else:
                messages.append(f"Validation error: {error.message}")

        super().__init__("\n".join(messages))


class ApiflowError(Exception):
    """Base class for runtime errors raised while running a workflow.

    Every runtime error carries a free-form ``context`` dict and serializes to
    the ``{type, message, context}`` error shape used in run results.
    """

    error_type = "ApiflowError"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.error_type,
            'message': self.message,
            'context': self.context,
        }


class ExpressionError(ApiflowError):
    """Base class for expression resolution failures."""
    error_type = "ExpressionError"


class UnknownRootError(ExpressionError):
    """A runtime expression names a root the execution context does not have."""
    error_type = "UnknownRootError"

    def __init__(self, root: str, expression: str = ""):
        super().__init__(
            f"Unknown expression root '${root}'",
            {'root': root, 'expression': expression},
        )
        self.root = root


class ExpressionSyntaxError(ExpressionError):
    """An expression or query could not be parsed."""
    error_type = "ExpressionSyntaxError"


class PatternError(ExpressionError):
    """A regex criterion carries an invalid pattern."""
    error_type = "PatternError"


class MissingContextError(ExpressionError):
    """An xpath or regex evaluation has no subject to run against."""
    error_type = "MissingContextError"


class UnsupportedDialectError(ExpressionError):
    error_type = "UnsupportedDialectError"

    def __init__(self, dialect: str):
        super().__init__(f"Unsupported expression type: {dialect}", {'dialect': dialect})
        self.dialect = dialect


class CriteriaNotMetError(ApiflowError):
    """Raised when a step's success criteria do not hold."""
    error_type = "CriteriaNotMetError"


class OperationNotFoundError(ApiflowError):
    error_type = "OperationNotFoundError"


class TransportError(ApiflowError):
    """Base class for HTTP call failures."""
    error_type = "TransportError"


class ProtocolError(TransportError):
    """The remote side answered with an error status."""
    error_type = "FetchError"

    def __init__(
        self,
        method: str,
        url: str,
        status_code: int,
        status_text: str = "",
        body: Any = None
    ):
        message = f'[{method}] "{url}": {status_code} {status_text}'.rstrip()
        super().__init__(message, {
            'method': method,
            'url': url,
            'statusCode': status_code,
            'statusText': status_text,
            'data': body,
        })
        self.status_code = status_code
        self.status_text = status_text
        self.body = body


class NetworkError(TransportError):
    """No response was received."""
    error_type = "NetworkError"

    def __init__(self, method: str, url: str, reason: str):
        super().__init__(
            f'[{method}] "{url}": {reason}',
            {'method': method, 'url': url, 'reason': reason},
        )
        self.reason = reason


class UnsupportedActionError(ApiflowError):
    """An action kind outside end/goto/retry reached the dispatcher.

    This is an engine defect and is never routed to a step's failure path.
    """
    error_type = "UnsupportedActionError"


class RunCancelledError(ApiflowError):
    error_type = "RunCancelledError"


class SubWorkflowFailedError(ApiflowError):
    """A nested workflow invoked by a step did not succeed."""
    error_type = "SubWorkflowFailedError"
