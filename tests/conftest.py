"""
Pytest configuration and fixtures for the CMS export client tests.
"""

import json
from unittest.mock import MagicMock, Mock

import pytest

from cmsv6_export.cms_client import CMSApiClient
from cmsv6_export.config import CMSServer


def make_response(status_code=200, json_data=None, text=None, content=b''):
    """Build a mocked requests.Response"""
    response = Mock()
    response.status_code = status_code
    if json_data is not None:
        response.json.return_value = json_data
        response.text = text if text is not None else json.dumps(json_data)
    else:
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        response.text = text if text is not None else content.decode(errors='ignore')
    response.iter_content.return_value = [content] if content else []
    return response


class FakeGateway:
    """Routes mocked HTTP requests by CMS action and records every call"""

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.session = MagicMock()
        self.session.request.side_effect = self._dispatch

    def add(self, action, *responses):
        self.routes.setdefault(action, []).extend(responses)

    def _dispatch(self, method, url, params=None, timeout=None, stream=False):
        self.calls.append({'method': method, 'url': url, 'params': params})
        for action, queue in self.routes.items():
            if action in url:
                if not queue:
                    raise AssertionError(f"No response queued for {url}")
                response = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"Unexpected request: {method} {url}")

    def calls_to(self, action):
        return [c for c in self.calls if action in c['url']]


@pytest.fixture
def cms_server():
    return CMSServer(
        host='cms.example.com',
        username='admin',
        password='secret',
        port=8080,
        download_port=6609,
    )


@pytest.fixture
def gateway():
    gw = FakeGateway()
    gw.add('StandardApiAction_login.action', make_response(json_data={'result': 0, 'jsession': 'sess-1'}))
    return gw


@pytest.fixture
def client(cms_server, gateway):
    api = CMSApiClient(cms_server, http_session=gateway.session)
    yield api
    api.close()


@pytest.fixture
def task_url():
    return (
        "http://cms.example.com:8080/StandardApiAction_addDownloadTask.action"
        "?jsession=sess-1&did=10001&fbtm=2024-01-31%2010:00:00&fetm=2024-01-31%2010:00:05"
        "&sbtm=2024-01-31%2010:00:00&setm=2024-01-31%2010:00:05"
        "&fph=/a/b/c/video123.h264&vtp=0&len=4096&chn=0&dtp=1&extra=drop-me"
    )
