"""
Operation catalog over a document's source descriptions.

Operations come from two places:
- an inline ``operations`` list ({operationId, method, url, timeout, ...})
- a parsed OpenAPI ``document`` attached to the source description
"""

import logging
import re
from typing import Dict, List, Optional
from urllib.parse import urljoin

from ..exceptions import OperationNotFoundError
from ..expressions.references import unescape_pointer_token
from ..models import SourceDescription
from .types import Operation


logger = logging.getLogger(__name__)

HTTP_METHODS = ('get', 'put', 'post', 'delete', 'options', 'head', 'patch', 'trace')

# {$sourceDescriptions.name.url}#/paths/... or $sourceDescriptions.name#/paths/...
OPERATION_PATH_PATTERN = re.compile(
    r'^\{?\$sourceDescriptions\.([A-Za-z0-9_\-]+)(?:\.url)?\}?#(/.*)$'
)


class OperationCatalog:
    """
    Lookup of operations by id or by JSON Pointer path.

    Lookups that find nothing raise OperationNotFoundError, which the engine
    routes to the step's failure actions.
    """

    def __init__(self, sources: List[SourceDescription]):
        """Initialize the catalog from source descriptions in document order."""
        self._sources: Dict[str, SourceDescription] = {s.name: s for s in sources}
        self._order = [s.name for s in sources]
        self._operations: Dict[str, Dict[str, Operation]] = {}

    def operations_for(self, source_name: str) -> Dict[str, Operation]:
        """
        All identified operations of one source.

        Args:
            source_name: Source description name

        Returns:
            Mapping of operationId to Operation, inline operations first
        """
        if source_name not in self._operations:
            source = self._get_source(source_name)
            operations: Dict[str, Operation] = {}
            for data in source.operations:
                operation = Operation.from_dict(data, source=source.name)
                if operation.operation_id:
                    operations.setdefault(operation.operation_id, operation)
            for operation in self._document_operations(source):
                operations.setdefault(operation.operation_id, operation)
            self._operations[source_name] = operations
            logger.debug(f"Source '{source_name}' exposes {len(operations)} operations")
        return self._operations[source_name]

    def find_operation(self, operation_id: str) -> Operation:
        """
        Find an operation by id.

        ``source.operationId`` restricts the search to one source; a bare id
        matches the first source that declares it.
        """
        source_name, _, qualified_id = operation_id.partition('.')
        if qualified_id and source_name in self._sources:
            operation = self.operations_for(source_name).get(qualified_id)
            if operation:
                return operation
            raise OperationNotFoundError(
                f'Operation "{qualified_id}" not found in source description "{source_name}"',
                {'operationId': operation_id},
            )

        for name in self._order:
            operation = self.operations_for(name).get(operation_id)
            if operation:
                return operation

        raise OperationNotFoundError(
            f'Operation "{operation_id}" not found in source descriptions',
            {'operationId': operation_id},
        )

    def resolve_path(self, operation_path: str) -> Operation:
        """
        Resolve an operationPath such as
        ``{$sourceDescriptions.petStore.url}#/paths/~1pet~1findByStatus/get``.
        """
        match = OPERATION_PATH_PATTERN.match(operation_path.strip())
        if not match:
            raise OperationNotFoundError(
                f"Invalid operationPath: {operation_path}",
                {'operationPath': operation_path},
            )

        source = self._get_source(match.group(1))
        tokens = [unescape_pointer_token(t) for t in match.group(2)[1:].split('/')]
        if len(tokens) != 3 or tokens[0] != 'paths' or tokens[2].lower() not in HTTP_METHODS:
            raise OperationNotFoundError(
                f"operationPath must point at /paths/<path>/<method>: {operation_path}",
                {'operationPath': operation_path},
            )

        path, method = tokens[1], tokens[2].lower()
        document = source.document
        if not document:
            raise OperationNotFoundError(
                f'Source description "{source.name}" has no loaded API description',
                {'operationPath': operation_path},
            )

        path_item = (document.get('paths') or {}).get(path) or {}
        operation_data = path_item.get(method)
        if not isinstance(operation_data, dict):
            raise OperationNotFoundError(
                f'No {method.upper()} {path} in source description "{source.name}"',
                {'operationPath': operation_path},
            )

        return Operation(
            url=self._base_url(source) + path,
            method=method.upper(),
            operation_id=operation_data.get('operationId'),
            source=source.name,
        )

    def _get_source(self, name: str) -> SourceDescription:
        if name not in self._sources:
            raise OperationNotFoundError(
                f'Source description "{name}" not found',
                {'source': name},
            )
        return self._sources[name]

    def _document_operations(self, source: SourceDescription) -> List[Operation]:
        document = source.document or {}
        base_url = self._base_url(source) if document else ""
        operations = []
        for path, path_item in (document.get('paths') or {}).items():
            if not isinstance(path_item, dict):
                continue
            for method in HTTP_METHODS:
                data = path_item.get(method)
                if isinstance(data, dict) and data.get('operationId'):
                    operations.append(Operation(
                        url=base_url + path,
                        method=method.upper(),
                        operation_id=data['operationId'],
                        source=source.name,
                    ))
        return operations

    def _base_url(self, source: SourceDescription) -> str:
        """API base URL: the first server entry, resolved against the source URL."""
        servers = (source.document or {}).get('servers') or []
        server_url: Optional[str] = None
        if servers and isinstance(servers[0], dict):
            server_url = servers[0].get('url')
        if server_url is None:
            return ""
        if source.url and source.url.startswith(('http://', 'https://')):
            server_url = urljoin(source.url, server_url)
        return server_url.rstrip('/')
