"""Collector REST API adapter.

Implements ReportingApiPort on top of RestClient. Paths are relative to
``<endpoint>/<project>``.
"""

import json
import logging
from typing import Any

from rpclient.core.models import LogRequest, Payload
from rpclient.core.ports import ReportingApiPort

from .oauth import OAuthTokenProvider
from .rest import Files, RestClient

logger = logging.getLogger(__name__)

JSON_PART_NAME = "json_request_part"
FILE_PART_NAME = "file"


def build_multipart_files(log_requests: list[LogRequest]) -> Files:
    """Multipart parts for a log batch: one JSON part, then one per file."""
    entries = []
    files: Files = []
    for request in log_requests:
        payload = dict(request.payload)
        if request.file is not None:
            payload["file"] = {"name": request.file.name}
            files.append(
                (
                    FILE_PART_NAME,
                    (request.file.name, request.file.to_bytes(), request.file.mime_type),
                )
            )
        entries.append(payload)
    body = json.dumps(entries, default=str).encode("utf-8")
    return [(JSON_PART_NAME, (None, body, "application/json")), *files]


class RestReportingApi(ReportingApiPort):
    """ReportingApiPort over the collector's v1/v2 REST API."""

    def __init__(
        self,
        rest_client: RestClient,
        token_provider: OAuthTokenProvider | None = None,
    ):
        self.rest_client = rest_client
        self.token_provider = token_provider

    async def start_launch(self, payload: Payload) -> Payload:
        return await self.rest_client.create("launch", payload)

    async def finish_launch(self, launch_uuid: str, payload: Payload) -> Payload:
        return await self.rest_client.update(f"launch/{launch_uuid}/finish", payload)

    async def update_launch(self, launch_uuid: str, payload: Payload) -> Payload:
        return await self.rest_client.update(f"launch/{launch_uuid}/update", payload)

    async def start_test_item(self, parent_uuid: str | None, payload: Payload) -> Payload:
        path = f"item/{parent_uuid}" if parent_uuid else "item/"
        return await self.rest_client.create(path, payload)

    async def finish_test_item(self, item_uuid: str, payload: Payload) -> Payload:
        return await self.rest_client.update(f"item/{item_uuid}", payload)

    async def save_log(self, payload: Payload) -> Payload:
        return await self.rest_client.create("log", payload)

    async def save_log_batch(self, log_requests: list[LogRequest]) -> Payload:
        files = build_multipart_files(log_requests)
        logger.debug(f"Save {len(log_requests)} log entries, {len(files) - 1} attachments")
        return await self.rest_client.create("log", files=files)

    async def get_launch(self, launch_uuid: str) -> Payload:
        return await self.rest_client.retrieve(f"launch/uuid/{launch_uuid}")

    async def get_test_item(self, item_uuid: str) -> Payload:
        return await self.rest_client.retrieve(f"item/uuid/{item_uuid}")

    async def find_launches(self, launch_uuids: list[str], mode: str | None) -> Payload:
        path = "launch/mode" if mode == "DEBUG" else "launch"
        params: dict[str, Any] = {
            "filter.in.uuid": ",".join(launch_uuids),
            "page.size": str(len(launch_uuids)),
        }
        return await self.rest_client.retrieve_sync_api(path, params=params)

    async def merge_launches(self, payload: Payload) -> Payload:
        return await self.rest_client.create("launch/merge", payload)

    async def check_connect(self) -> Payload:
        return await self.rest_client.retrieve_sync_api(
            "launch", params={"page.page": "1", "page.size": "1"}
        )

    async def close(self) -> None:
        await self.rest_client.close()
        if self.token_provider is not None:
            await self.token_provider.aclose()
