"""
Tests for the httpx-based HTTP client.

Requests are served by httpx.MockTransport, so nothing leaves the process.
"""

import json

import httpx
import pytest

from apiflow.exceptions import NetworkError, ProtocolError, RunCancelledError
from apiflow.exec.cancellation import CancellationToken
from apiflow.exec.http_client import HttpxClient
from apiflow.exec.types import RequestOptions


def make_client(handler):
    return HttpxClient(transport=httpx.MockTransport(handler))


class TestRequests:

    def test_json_response(self):
        seen = {}

        def handler(request):
            seen['method'] = request.method
            seen['url'] = str(request.url)
            seen['accept'] = request.headers.get('accept')
            return httpx.Response(200, json={'token': 'abc'}, headers={'X-Rate-Limit': '5'})

        with make_client(handler) as client:
            response = client.request(
                'https://api.example.com/login',
                RequestOptions(method='GET', headers={'accept': 'application/json'},
                               query={'user': 'ana', 'skip': None}),
            )

        assert response.status_code == 200
        assert response.body == {'token': 'abc'}
        assert response.headers['x-rate-limit'] == '5'
        assert seen == {
            'method': 'GET',
            'url': 'https://api.example.com/login?user=ana',
            'accept': 'application/json',
        }

    def test_json_body_is_sent(self):
        received = {}

        def handler(request):
            received.update(json.loads(request.content))
            return httpx.Response(201, json={'id': 1})

        with make_client(handler) as client:
            response = client.request(
                'https://api.example.com/order',
                RequestOptions(method='POST', body={'petId': 7, 'quantity': 1}),
            )

        assert response.status_code == 201
        assert received == {'petId': 7, 'quantity': 1}

    def test_form_body(self):
        def handler(request):
            assert request.content == b'name=dog'
            return httpx.Response(200, text='ok', headers={'content-type': 'text/plain'})

        with make_client(handler) as client:
            response = client.request(
                'https://api.example.com/pet',
                RequestOptions(method='POST', body={'name': 'dog'},
                               content_type='application/x-www-form-urlencoded'),
            )
        assert response.body == 'ok'

    def test_xml_body_is_text(self):
        def handler(request):
            return httpx.Response(200, content=b'<pet/>', headers={'content-type': 'application/xml'})

        with make_client(handler) as client:
            response = client.request('https://api.example.com/pet', RequestOptions())
        assert response.body == '<pet/>'

    def test_empty_body_is_none(self):
        with make_client(lambda request: httpx.Response(204)) as client:
            assert client.request('https://api.example.com/x', RequestOptions()).body is None


class TestFailures:

    def test_error_status_raises_protocol_error(self):
        def handler(request):
            return httpx.Response(404, json={'message': 'not found'})

        with make_client(handler) as client:
            with pytest.raises(ProtocolError) as exc_info:
                client.request('https://api.example.com/pet/9', RequestOptions(retry_count=0))

        error = exc_info.value
        assert error.status_code == 404
        assert error.body == {'message': 'not found'}
        assert str(error) == '[GET] "https://api.example.com/pet/9": 404 Not Found'
        assert error.to_dict()['type'] == 'FetchError'

    def test_transient_status_is_retried(self):
        statuses = iter([503, 503, 200])

        def handler(request):
            return httpx.Response(next(statuses), json={})

        with make_client(handler) as client:
            response = client.request(
                'https://api.example.com/x', RequestOptions(retry_count=2, retry_delay_ms=0)
            )
        assert response.status_code == 200

    def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={})

        with make_client(handler) as client:
            with pytest.raises(ProtocolError):
                client.request('https://api.example.com/x', RequestOptions(retry_count=3, retry_delay_ms=0))
        assert len(calls) == 1

    def test_connection_failure_raises_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(NetworkError) as exc_info:
                client.request('https://api.example.com/x', RequestOptions(retry_count=1, retry_delay_ms=0))
        assert 'connection refused' in exc_info.value.reason

    def test_cancelled_token_stops_before_send(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        token = CancellationToken()
        token.cancel()
        with make_client(handler) as client:
            with pytest.raises(RunCancelledError):
                client.request('https://api.example.com/x', RequestOptions(cancel_token=token))
        assert calls == []
