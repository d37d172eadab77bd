"""Shared fixtures for apiflow tests."""

from typing import Any, Dict, List, Optional

import pytest

from apiflow.exec.types import HttpResponse, RequestOptions


class ScriptedHttpClient:
    """
    HTTP client double with queued responses per (method, url).

    Each queued item is an HttpResponse to return or an exception to raise.
    The last item of a queue repeats once the others are used up.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, url: str, *items: Any) -> "ScriptedHttpClient":
        self.routes.setdefault((method.upper(), url), []).extend(items)
        return self

    def request(self, url: str, options: RequestOptions) -> HttpResponse:
        self.calls.append({'url': url, 'options': options})
        if options.cancel_token is not None:
            options.cancel_token.raise_if_cancelled()

        queue = self.routes.get((options.method.upper(), url))
        if not queue:
            raise AssertionError(f"Unexpected request: {options.method} {url}")

        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def calls_to(self, url: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c['url'] == url]


def json_response(status_code: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(
        status_code=status_code,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        body=body,
        status_text="OK" if status_code < 400 else "Error",
    )


def make_document(workflows: List[Dict[str, Any]], operations: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Minimal valid document with one inline-operation source."""
    return {
        'arazzo': '1.0.0',
        'info': {'title': 'Test workflows', 'version': '1.0.0'},
        'sourceDescriptions': [
            {
                'name': 'petStore',
                'url': 'https://petstore.example.com/openapi.json',
                'type': 'openapi',
                'operations': operations if operations is not None else PET_OPERATIONS,
            }
        ],
        'workflows': workflows,
    }


PET_OPERATIONS = [
    {'operationId': 'loginUser', 'method': 'GET', 'url': 'https://petstore.example.com/user/login'},
    {'operationId': 'findPets', 'method': 'GET', 'url': 'https://petstore.example.com/pet/findByStatus'},
    {'operationId': 'getPet', 'method': 'GET', 'url': 'https://petstore.example.com/pet/{petId}'},
    {'operationId': 'placeOrder', 'method': 'POST', 'url': 'https://petstore.example.com/store/order'},
]


@pytest.fixture
def http_client():
    return ScriptedHttpClient()
