"""Item registry and ordering engine.

This module turns the lifecycle calls of a test runner, issued in
whatever order the runner happens to make them, into correctly ordered
calls against the collector:

- a child's start is sent only after its parent's start succeeded
- a parent's finish is sent only after every child's finish settled
  (success or failure) and after its own start settled
- repeated attempts of the same test slot start one after another
- logs wait for their item and, when batching is enabled, travel in
  batches decided by the LogBatcher

Every public lifecycle method returns an ItemHandle immediately and
never raises. The network work runs in tasks on the running event loop.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any

from .errors import AlreadyFinishedError, NotFoundError, ReportingError
from .helpers import (
    generate_test_case_id,
    get_system_attributes,
    now,
    read_launches_from_file,
    save_launch_id_to_file,
)
from .log_batcher import LogBatcher
from .models import (
    DEFAULT_LAUNCH_NAME,
    FileAttachment,
    ItemHandle,
    ItemRecord,
    ItemStatus,
    LogRequest,
    Payload,
)
from .ports import LaunchIdSink, ReportingApiPort, ReportingPort
from .registry import ItemRegistry
from .retry_chain import RetryChainDeduplicator

logger = logging.getLogger(__name__)

NOT_ISSUE = {"issueType": "NOT_ISSUE"}


def _observe(signal: "asyncio.Future[Any]") -> None:
    """Mark a failure as retrieved so fire-and-forget callers stay quiet."""
    if signal.cancelled():
        return
    error = signal.exception()
    if error is not None:
        logger.debug(f"Signal settled with failure: {error!r}")


def _resolve(signal: "asyncio.Future[Any]", value: Any) -> None:
    if not signal.done():
        signal.set_result(value)


def _reject(signal: "asyncio.Future[Any]", error: BaseException) -> None:
    if not signal.done():
        signal.set_exception(error)


class ReportingService(ReportingPort):
    """Orchestrates launches, test items and logs for one client.

    The registry, the retry chain map and the batcher are owned by this
    instance. Scheduling is cooperative, so no locks are needed, but
    every bookkeeping mutation happens before the first await point.
    """

    def __init__(
        self,
        api: ReportingApiPort | None,
        *,
        launch_name: str | None = None,
        launch_defaults: Payload | None = None,
        skipped_issue: bool = True,
        launch_id_sink: LaunchIdSink | None = None,
        batcher: LogBatcher | None = None,
        launch_merge_required: bool = False,
        merge_dir: Path | None = None,
        config_error: ReportingError | None = None,
    ):
        if api is None and config_error is None:
            raise ValueError("api is required unless the client is degraded")
        self.api = api
        self.launch_name = launch_name or DEFAULT_LAUNCH_NAME
        self.launch_defaults = dict(launch_defaults or {})
        self.skipped_issue = skipped_issue
        self.launch_id_sink = launch_id_sink
        self.batcher = batcher
        self.launch_merge_required = launch_merge_required
        self.merge_dir = merge_dir
        self.config_error = config_error

        self.registry = ItemRegistry()
        self.retry_chain = RetryChainDeduplicator()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._pending_logs: set[asyncio.Task[Any]] = set()
        self._deliveries: set[asyncio.Task[Any]] = set()

    @property
    def is_degraded(self) -> bool:
        """True when the client was built from an invalid configuration."""
        return self.config_error is not None

    # ------------------------------------------------------------------
    # Launch lifecycle
    # ------------------------------------------------------------------

    def start_launch(self, launch: Payload | None = None) -> ItemHandle:
        if self.config_error is not None:
            return self._rejected("", self.config_error)

        launch = dict(launch or {})
        record = self._create_record()

        if launch.get("id"):
            record.remote_id = launch["id"]
            record.start.set_result(launch)
            logger.debug(
                f"Attached to existing launch {record.remote_id} "
                f"with tempId {record.local_id}"
            )
        else:
            payload = self._build_launch_payload(launch)
            self._spawn(self._start_launch(record, payload))

        return ItemHandle(record.local_id, record.start)

    def finish_launch(self, launch_id: str, finish: Payload | None = None) -> ItemHandle:
        if self.config_error is not None:
            return self._rejected(launch_id, self.config_error)

        record = self.registry.get(launch_id)
        if record is None or not record.is_launch:
            return self._rejected(launch_id, NotFoundError("Launch", launch_id))
        if record.finish_requested:
            logger.warning(f"Finish of launch with tempId {launch_id} was already requested")
            return ItemHandle(launch_id, record.finish)

        payload = {"endTime": now(), **(finish or {})}
        record.finish_requested = True
        children = list(record.children)
        self._spawn(self._finish_launch(record, children, payload))
        return ItemHandle(launch_id, record.finish)

    def update_launch(self, launch_id: str, data: Payload) -> ItemHandle:
        if self.config_error is not None:
            return self._rejected(launch_id, self.config_error)

        record = self.registry.get(launch_id)
        if record is None or not record.is_launch:
            return self._rejected(launch_id, NotFoundError("Launch", launch_id))

        signal = self._new_signal()
        self._spawn(
            self._after_finish(
                record,
                signal,
                lambda: self._api.update_launch(record.remote_id or "", data),
                "Update launch",
            )
        )
        return ItemHandle(launch_id, signal)

    def get_launch_info(self, launch_id: str) -> ItemHandle:
        """Read the launch back from the collector once it finished."""
        if self.config_error is not None:
            return self._rejected(launch_id, self.config_error)

        record = self.registry.get(launch_id)
        if record is None or not record.is_launch:
            return self._rejected(launch_id, NotFoundError("Launch", launch_id))

        signal = self._new_signal()
        self._spawn(
            self._after_finish(
                record,
                signal,
                lambda: self._api.get_launch(record.remote_id or ""),
                "Read launch",
            )
        )
        return ItemHandle(launch_id, signal)

    def wait_for_all_items(self, launch_id: str) -> "asyncio.Future[Any]":
        """All-settled join over the launch's direct children.

        Useful for runners that exit without awaiting individual finishes.
        """
        if self.config_error is not None:
            return self._rejected(launch_id, self.config_error).signal

        record = self.registry.get(launch_id)
        if record is None or not record.is_launch:
            return self._rejected(launch_id, NotFoundError("Launch", launch_id)).signal
        signals = [
            child.finish
            for child in map(self.registry.get, record.children)
            if child is not None
        ]
        return asyncio.gather(*signals, return_exceptions=True)

    # ------------------------------------------------------------------
    # Test item lifecycle
    # ------------------------------------------------------------------

    def start_test_item(
        self, item: Payload, launch_id: str, parent_id: str | None = None
    ) -> ItemHandle:
        if self.config_error is not None:
            return self._rejected(launch_id, self.config_error)

        launch = self.registry.get(launch_id)
        if launch is None or not launch.is_launch:
            return self._rejected(launch_id, NotFoundError("Launch", launch_id))
        if launch.finish_requested:
            return self._rejected(launch_id, AlreadyFinishedError(launch_id))

        parent = launch
        if parent_id:
            found = self.registry.get(parent_id)
            if found is None:
                return self._rejected(launch_id, NotFoundError("Item", parent_id))
            parent = found

        item = dict(item)
        test_case_id = item.get("testCaseId") or generate_test_case_id(
            item.get("codeRef"), item.get("parameters")
        )
        payload = {"startTime": now(), **item}
        if test_case_id:
            payload["testCaseId"] = test_case_id

        key = self.retry_chain.make_key(
            launch_id, parent_id, item.get("name", ""), item.get("uniqueId")
        )
        previous_attempt = self.retry_chain.acquire(key) if item.get("retry") else None

        record = self._create_record(launch_id=launch_id, parent_id=parent.local_id)
        # Registered before any await so the parent's fan-in sees it.
        parent.children.append(record.local_id)
        self.retry_chain.publish(key, record.start, owner=record.local_id)

        self._spawn(self._start_test_item(record, launch, parent, payload, previous_attempt))
        return ItemHandle(record.local_id, record.start)

    def finish_test_item(self, item_id: str, finish: Payload | None = None) -> ItemHandle:
        if self.config_error is not None:
            return self._rejected(item_id, self.config_error)

        record = self.registry.get(item_id)
        if record is None or record.is_launch:
            return self._rejected(item_id, NotFoundError("Item", item_id))
        if record.finish_requested:
            logger.warning(f"Finish of item with tempId {item_id} was already requested")
            return ItemHandle(item_id, record.finish)

        payload: Payload = {"endTime": now()}
        if not record.children:
            payload["status"] = ItemStatus.PASSED.value
        payload.update(finish or {})
        if (
            payload.get("status") == ItemStatus.SKIPPED.value
            and not self.skipped_issue
            and "issue" not in payload
        ):
            payload["issue"] = dict(NOT_ISSUE)

        record.finish_requested = True
        children = list(record.children)
        self._spawn(self._finish_test_item(record, children, payload))
        return ItemHandle(item_id, record.finish)

    def get_test_item_info(self, item_id: str) -> ItemHandle:
        """Read the item back from the collector once it finished."""
        if self.config_error is not None:
            return self._rejected(item_id, self.config_error)

        record = self.registry.get(item_id)
        if record is None or record.is_launch:
            return self._rejected(item_id, NotFoundError("Item", item_id))

        signal = self._new_signal()
        self._spawn(
            self._after_finish(
                record,
                signal,
                lambda: self._api.get_test_item(record.remote_id or ""),
                "Read test item",
            )
        )
        return ItemHandle(item_id, signal)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def send_log(
        self,
        item_id: str,
        log: Payload | None = None,
        file: FileAttachment | None = None,
    ) -> ItemHandle:
        if self.config_error is not None:
            return self._rejected(item_id, self.config_error)

        target = self.registry.get(item_id)
        if target is None:
            return self._rejected(item_id, NotFoundError("Item", item_id))

        payload = {"time": now(), "message": "", "level": "", **(log or {})}
        record = self._create_record(launch_id=target.launch_id, parent_id=target.local_id)
        record.finish_requested = True
        if self.batcher is None:
            # Unbatched logs hold their item's finish until delivered.
            target.children.append(record.local_id)

        request = LogRequest(payload=payload, file=file, local_id=record.local_id)
        task = self._spawn(self._save_log(record, target, request))
        if self.batcher is not None:
            self._pending_logs.add(task)
            task.add_done_callback(self._pending_logs.discard)
        return ItemHandle(record.local_id, record.finish)

    async def flush_logs(self) -> None:
        """Ship every pending batch and wait until all deliveries settled."""
        if self.batcher is None:
            return
        if self._pending_logs:
            await asyncio.gather(*self._pending_logs, return_exceptions=True)
        batch = self.batcher.flush()
        if batch:
            self._deliver(batch)
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    # ------------------------------------------------------------------
    # Launch merge and connectivity
    # ------------------------------------------------------------------

    async def merge_launches(self, merge_options: Payload | None = None) -> Payload | None:
        """Merge every launch whose id was saved by this or other processes."""
        if self.config_error is not None:
            raise self.config_error
        if not self.launch_merge_required:
            logger.debug(
                "Option is_launch_merge_required is false, merge process cannot "
                "be done as no launch UUIDs were saved."
            )
            return None

        launch_uuids = await asyncio.to_thread(read_launches_from_file, self.merge_dir)
        logger.debug(f"Find launches with UUIDs to merge: {launch_uuids}")
        try:
            found = await self._api.find_launches(launch_uuids, self.launch_defaults.get("mode"))
            launch_ids = [launch["id"] for launch in found.get("content", [])]
            request = self._build_merge_request(launch_ids, merge_options)
            logger.debug(f"Merge launches with ids: {launch_ids}")
            response = await self._api.merge_launches(request)
        except Exception as e:
            logger.error(f"Error merging launches with UUIDs {launch_uuids}: {e}", exc_info=True)
            return None

        logger.debug(f"Launches with UUIDs {launch_uuids} were successfully merged")
        merged_uuid = response.get("uuid")
        if merged_uuid:
            self._emit_launch_id(merged_uuid)
        return response

    async def check_connect(self) -> Payload:
        """Validate endpoint, project and credentials with one cheap read."""
        if self.config_error is not None:
            raise self.config_error
        return await self._api.check_connect()

    async def aclose(self) -> None:
        """Deliver pending logs and close the API adapter."""
        if self.api is None:
            return
        await self.flush_logs()
        await self.api.close()

    # ------------------------------------------------------------------
    # Network steps
    # ------------------------------------------------------------------

    async def _start_launch(self, record: ItemRecord, payload: Payload) -> None:
        logger.debug(f"Start launch with tempId {record.local_id}")
        try:
            response = await self._api.start_launch(payload)
            remote_id = response["id"]
        except Exception as e:
            logger.error(f"Error start launch with tempId {record.local_id}: {e}")
            _reject(record.start, e)
            return

        record.remote_id = remote_id
        if self.launch_merge_required:
            try:
                await asyncio.to_thread(save_launch_id_to_file, remote_id, self.merge_dir)
            except OSError as e:
                # The launch exists remotely; only the later merge loses it.
                logger.error(f"Failed to save launch {remote_id} for merge: {e}")
        logger.debug(f"Success start launch with tempId {record.local_id}: {remote_id}")
        _resolve(record.start, response)

    async def _finish_launch(
        self, record: ItemRecord, children: list[str], payload: Payload
    ) -> None:
        await self._join_children(record, children)
        await self.flush_logs()
        self.retry_chain.purge_launch(record.local_id)

        try:
            await record.start
            logger.debug(f"Finish launch with tempId {record.local_id}")
            response = await self._api.finish_launch(record.remote_id or "", payload)
        except Exception as e:
            logger.error(f"Error finish launch with tempId {record.local_id}: {e}")
            _reject(record.finish, e)
            return

        link = response.get("link")
        if link:
            logger.info(f"ReportPortal Launch Link: {link}")
        self._emit_launch_id(record.remote_id or "")
        _resolve(record.finish, response)

    async def _start_test_item(
        self,
        record: ItemRecord,
        launch: ItemRecord,
        parent: ItemRecord,
        payload: Payload,
        previous_attempt: "asyncio.Future[Any] | None",
    ) -> None:
        try:
            if previous_attempt is not None and not previous_attempt.done():
                logger.debug(
                    f"Item with tempId {record.local_id} waits for the previous attempt"
                )
                await asyncio.wait([previous_attempt])
            await parent.start

            payload["launchUuid"] = launch.remote_id
            parent_uuid = None if parent.is_launch else parent.remote_id
            logger.debug(f"Start test item with tempId {record.local_id}")
            response = await self._api.start_test_item(parent_uuid, payload)
            remote_id = response["id"]
        except Exception as e:
            logger.debug(f"Error start item with tempId {record.local_id}: {e}")
            _reject(record.start, e)
            return

        record.remote_id = remote_id
        logger.debug(f"Success start item with tempId {record.local_id}: {remote_id}")
        _resolve(record.start, response)

    async def _finish_test_item(
        self, record: ItemRecord, children: list[str], payload: Payload
    ) -> None:
        await self._join_children(record, children)

        try:
            await record.start
            launch = self.registry.get(record.launch_id)
            payload["launchUuid"] = launch.remote_id if launch else None
            logger.debug(f"Finish test item with tempId {record.local_id}")
            response = await self._api.finish_test_item(record.remote_id or "", payload)
        except Exception as e:
            logger.debug(f"Error finish test item with tempId {record.local_id}: {e}")
            _reject(record.finish, e)
            return

        logger.debug(f"Success finish item with tempId {record.local_id}")
        _resolve(record.finish, response)

    async def _join_children(self, record: ItemRecord, children: list[str]) -> None:
        """Wait until every child settled, then drop the children."""
        pending = [
            (child.local_id, child.finish)
            for child in map(self.registry.get, children)
            if child is not None
        ]
        if pending:
            logger.debug(f"Finish all children of tempId {record.local_id}")
            results = await asyncio.gather(
                *(signal for _, signal in pending), return_exceptions=True
            )
            for (child_id, _), result in zip(pending, results):
                if isinstance(result, BaseException):
                    logger.debug(f"Failed to finish child {child_id} of {record.local_id}")
                else:
                    logger.debug(f"Successfully finished child {child_id} of {record.local_id}")

        self.retry_chain.release_owners(children)
        self.registry.remove(children)

    async def _after_finish(
        self,
        record: ItemRecord,
        signal: "asyncio.Future[Any]",
        call: Callable[[], Awaitable[Payload]],
        action: str,
    ) -> None:
        try:
            await record.finish
            logger.debug(f"{action} with tempId {record.local_id}")
            response = await call()
        except Exception as e:
            logger.error(f"{action} with tempId {record.local_id} failed: {e}")
            _reject(signal, e)
            return
        _resolve(signal, response)

    async def _save_log(
        self, record: ItemRecord, target: ItemRecord, request: LogRequest
    ) -> None:
        try:
            await target.start
            launch = self.registry.get(target.launch_id)
            request.payload["launchUuid"] = launch.remote_id if launch else None
            if not target.is_launch:
                request.payload["itemUuid"] = target.remote_id
        except Exception as e:
            self._settle_log(record, error=e)
            if self.batcher is not None:
                self.registry.remove([record.local_id])
            return

        if self.batcher is not None:
            batch = self.batcher.append(request)
            if batch:
                self._deliver(batch)
            return

        try:
            logger.debug(f"Save log with tempId {record.local_id}")
            if request.file is None:
                response = await self._api.save_log(request.payload)
            else:
                response = await self._api.save_log_batch([request])
        except Exception as e:
            logger.error(f"Error save log with tempId {record.local_id}: {e}")
            self._settle_log(record, error=e)
            return
        self._settle_log(record, response=response)

    def _deliver(self, batch: list[LogRequest]) -> None:
        task = self._spawn(self._send_batch(batch))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _send_batch(self, batch: list[LogRequest]) -> None:
        local_ids = [request.local_id for request in batch]
        logger.debug(f"Send log batch of {len(batch)} entries")
        try:
            response = await self._api.save_log_batch(batch)
        except Exception as e:
            logger.error(f"Error sending log batch of {len(batch)} entries: {e}")
            for record in map(self.registry.get, local_ids):
                if record is not None:
                    self._settle_log(record, error=e)
        else:
            for record in map(self.registry.get, local_ids):
                if record is not None:
                    self._settle_log(record, response=response)
        finally:
            self.registry.remove(local_ids)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @property
    def _api(self) -> ReportingApiPort:
        if self.api is None:
            raise self.config_error or ReportingError("Reporting API is not configured")
        return self.api

    def _build_launch_payload(self, launch: Payload) -> Payload:
        defaults = {
            key: value
            for key, value in self.launch_defaults.items()
            if key != "attributes" and value is not None
        }
        attributes = launch.get("attributes")
        if attributes is None:
            attributes = self.launch_defaults.get("attributes")
        payload = {"name": self.launch_name, "startTime": now(), **defaults, **launch}
        payload["attributes"] = list(attributes or []) + get_system_attributes()
        return payload

    def _build_merge_request(
        self, launch_ids: list[Any], merge_options: Payload | None
    ) -> Payload:
        return {
            "launches": launch_ids,
            "mergeType": "BASIC",
            "description": self.launch_defaults.get("description") or "Merged launch",
            "mode": self.launch_defaults.get("mode") or "DEFAULT",
            "name": self.launch_name,
            "attributes": self.launch_defaults.get("attributes"),
            "endTime": now(),
            "extendSuitesDescription": True,
            **(merge_options or {}),
        }

    def _emit_launch_id(self, launch_uuid: str) -> None:
        if self.launch_id_sink is None:
            return
        try:
            self.launch_id_sink(launch_uuid)
        except Exception as e:
            logger.error(f"Failed to output launch UUID {launch_uuid}: {e}", exc_info=True)

    def _settle_log(
        self,
        record: ItemRecord,
        response: Payload | None = None,
        error: BaseException | None = None,
    ) -> None:
        if error is not None:
            _reject(record.start, error)
            _reject(record.finish, error)
        else:
            _resolve(record.start, response)
            _resolve(record.finish, response)

    def _create_record(
        self, launch_id: str | None = None, parent_id: str | None = None
    ) -> ItemRecord:
        record = self.registry.create(launch_id=launch_id, parent_id=parent_id)
        record.start.add_done_callback(_observe)
        record.finish.add_done_callback(_observe)
        return record

    def _new_signal(self) -> "asyncio.Future[Any]":
        signal = asyncio.get_running_loop().create_future()
        signal.add_done_callback(_observe)
        return signal

    def _rejected(self, local_id: str, error: ReportingError) -> ItemHandle:
        logger.error(str(error))
        signal = self._new_signal()
        signal.set_exception(error)
        return ItemHandle(local_id, signal)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> "asyncio.Task[None]":
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
