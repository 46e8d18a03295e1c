"""Tests for the collector REST API adapter."""

import json

import httpx
import pytest

from rpclient.adapters.transport.api import RestReportingApi, build_multipart_files
from rpclient.adapters.transport.rest import RestClient
from rpclient.core.models import FileAttachment, LogRequest


class RecordingCollector:
    """MockTransport handler that records requests and answers with JSON."""

    def __init__(self, response: dict | None = None):
        self.requests: list[httpx.Request] = []
        self.response = response or {"id": "remote-id"}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json=self.response)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def collector() -> RecordingCollector:
    return RecordingCollector()


@pytest.fixture
def api(collector: RecordingCollector) -> RestReportingApi:
    rest_client = RestClient(
        "http://collector.test/api/v2/proj",
        transport=httpx.MockTransport(collector),
    )
    return RestReportingApi(rest_client)


def test_multipart_parts_for_batch() -> None:
    """One JSON part listing every entry, then one part per attachment."""
    file = FileAttachment("shot.png", b"png-bytes", "image/png")
    requests = [
        LogRequest(payload={"message": "plain"}),
        LogRequest(payload={"message": "with file"}, file=file),
    ]

    parts = build_multipart_files(requests)

    name, (filename, body, content_type) = parts[0]
    assert name == "json_request_part"
    assert filename is None
    assert content_type == "application/json"
    entries = json.loads(body)
    assert entries[0] == {"message": "plain"}
    assert entries[1]["file"] == {"name": "shot.png"}
    assert parts[1] == ("file", ("shot.png", b"png-bytes", "image/png"))
    assert "file" not in requests[1].payload


@pytest.mark.asyncio
class TestRestReportingApi:
    """Paths and verbs of every collector call."""

    async def test_launch_calls(self, api: RestReportingApi, collector: RecordingCollector) -> None:
        await api.start_launch({"name": "L"})
        assert (collector.last.method, collector.last.url.path) == ("POST", "/api/v2/proj/launch")
        assert json.loads(collector.last.content) == {"name": "L"}

        await api.finish_launch("abc", {"endTime": 1})
        assert (collector.last.method, collector.last.url.path) == (
            "PUT",
            "/api/v2/proj/launch/abc/finish",
        )

        await api.update_launch("abc", {"description": "d"})
        assert collector.last.url.path == "/api/v2/proj/launch/abc/update"

        await api.get_launch("abc")
        assert (collector.last.method, collector.last.url.path) == (
            "GET",
            "/api/v2/proj/launch/uuid/abc",
        )

    async def test_item_calls(self, api: RestReportingApi, collector: RecordingCollector) -> None:
        await api.start_test_item(None, {"name": "root"})
        assert collector.last.url.path == "/api/v2/proj/item/"

        await api.start_test_item("parent", {"name": "child"})
        assert collector.last.url.path == "/api/v2/proj/item/parent"

        await api.finish_test_item("child", {"status": "PASSED"})
        assert (collector.last.method, collector.last.url.path) == (
            "PUT",
            "/api/v2/proj/item/child",
        )

        await api.get_test_item("child")
        assert collector.last.url.path == "/api/v2/proj/item/uuid/child"

    async def test_log_calls(self, api: RestReportingApi, collector: RecordingCollector) -> None:
        await api.save_log({"message": "m"})
        assert collector.last.url.path == "/api/v2/proj/log"
        assert collector.last.headers["content-type"] == "application/json"

        attachment = FileAttachment("report.txt", "text body", "text/plain")
        await api.save_log_batch([LogRequest({"message": "m"}, attachment)])
        assert collector.last.url.path == "/api/v2/proj/log"
        assert collector.last.headers["content-type"].startswith("multipart/form-data")
        assert b'name="json_request_part"' in collector.last.content
        assert b'filename="report.txt"' in collector.last.content
        assert b"text body" in collector.last.content

    async def test_find_launches(self, api: RestReportingApi, collector: RecordingCollector) -> None:
        await api.find_launches(["a", "b"], None)
        assert collector.last.url.path == "/api/v1/proj/launch"
        assert collector.last.url.params["filter.in.uuid"] == "a,b"
        assert collector.last.url.params["page.size"] == "2"

        await api.find_launches(["a"], "DEBUG")
        assert collector.last.url.path == "/api/v1/proj/launch/mode"

    async def test_merge_and_connect(
        self, api: RestReportingApi, collector: RecordingCollector
    ) -> None:
        await api.merge_launches({"launches": [1, 2]})
        assert (collector.last.method, collector.last.url.path) == (
            "POST",
            "/api/v2/proj/launch/merge",
        )

        await api.check_connect()
        assert collector.last.url.path == "/api/v1/proj/launch"
        assert collector.last.url.params["page.page"] == "1"
        assert collector.last.url.params["page.size"] == "1"

        await api.close()
