"""
Public entry points of the R bridge.

RBridge exposes the three operations callers use: listing the dataset
catalog, fetching a dataset, and executing R code. Every call holds the
session's request guard for its whole duration, so calls never interleave.

AsyncRBridge wraps an RBridge for asyncio callers. All calls run on one
dedicated worker thread, so they complete in submission order without
blocking the event loop.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from rbridge.config import BridgeSettings
from rbridge.datasets import DatasetCatalog
from rbridge.engine import ExecutionEngine, ExecutionOptions, ExecutionRequest, ExecutionResult
from rbridge.marshal import DatasetDescriptor, DataMarshaler

logger = logging.getLogger(__name__)


class RBridge:
    def __init__(self, session, settings: Optional[BridgeSettings] = None):
        self.session = session
        self.settings = settings or session.settings
        self.marshaler = DataMarshaler(session, self.settings)
        self.catalog = DatasetCatalog(session, self.settings)
        self.engine = ExecutionEngine(session, marshaler=self.marshaler, settings=self.settings)

    def list_datasets(self) -> List[Dict[str, str]]:
        """Catalog entries as ``{"value", "label"}`` dicts."""
        with self.session.exclusive():
            self.session.ensure_initialized()
            return self.catalog.entries()

    def fetch_dataset(self, name: str) -> Dict[str, Any]:
        """Rows and summary of a catalog dataset.

        Raises:
            DatasetNotFoundError: ``name`` is not in the catalog (or has no rows).
        """
        with self.session.exclusive():
            self.session.ensure_initialized()
            rows, summary = self.marshaler.load_named_dataset(name)
        return {"rows": rows, "summary": summary}

    def describe_dataset(self, name: Optional[str] = None,
                         uploaded_data: Optional[Dict[str, Any]] = None) -> DatasetDescriptor:
        """Shape and str() summary of the table a request would bind to ``df``."""
        request = self._request("", name, uploaded_data, None)
        with self.session.exclusive():
            self.session.ensure_initialized()
            with self.engine.resolve_table(request) as table:
                label = name or (uploaded_data or {}).get("name") or "df"
                return self.marshaler.describe(table, label)

    def run(self, code: str, dataset_name: Optional[str] = None,
            uploaded_data: Optional[Dict[str, Any]] = None,
            options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        return self.engine.execute(self._request(code, dataset_name, uploaded_data, options))

    def execute_r_code(self, code: str, dataset_name: Optional[str] = None,
                       uploaded_data: Optional[Dict[str, Any]] = None,
                       options: Optional[ExecutionOptions] = None) -> Dict[str, Any]:
        """Execute R code against a dataset; returns the success/output/plot/error payload.

        ``uploaded_data`` is ``{"data": RowTable, "name": str}``. A dataset name
        takes precedence over uploaded rows; with neither, ``df`` is the
        synthetic fallback table.
        """
        return self.run(code, dataset_name, uploaded_data, options).to_payload()

    @staticmethod
    def _request(code, dataset_name, uploaded_data, options) -> ExecutionRequest:
        rows = (uploaded_data or {}).get("data") or None
        return ExecutionRequest(
            source_text=code,
            dataset_ref=dataset_name or None,
            inline_rows=rows,
            options=options or ExecutionOptions(),
        )

    def shutdown(self) -> None:
        self.session.shutdown()


class AsyncRBridge:
    """asyncio facade over an RBridge, serialized on one worker thread."""

    def __init__(self, bridge: RBridge):
        self.bridge = bridge
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rbridge")

    async def _submit(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    async def list_datasets(self) -> List[Dict[str, str]]:
        return await self._submit(self.bridge.list_datasets)

    async def fetch_dataset(self, name: str) -> Dict[str, Any]:
        return await self._submit(self.bridge.fetch_dataset, name)

    async def describe_dataset(self, name: Optional[str] = None,
                               uploaded_data: Optional[Dict[str, Any]] = None) -> DatasetDescriptor:
        return await self._submit(self.bridge.describe_dataset, name, uploaded_data)

    async def run(self, code: str, dataset_name: Optional[str] = None,
                  uploaded_data: Optional[Dict[str, Any]] = None,
                  options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        return await self._submit(self.bridge.run, code, dataset_name, uploaded_data, options)

    async def execute_r_code(self, code: str, dataset_name: Optional[str] = None,
                             uploaded_data: Optional[Dict[str, Any]] = None,
                             options: Optional[ExecutionOptions] = None) -> Dict[str, Any]:
        return await self._submit(self.bridge.execute_r_code, code, dataset_name, uploaded_data, options)

    async def initialize(self) -> None:
        """Start R on the worker thread every later call runs on."""
        await self._submit(self.bridge.session.ensure_initialized)

    def blocking(self) -> "BlockingRBridge":
        return BlockingRBridge(self)

    def close(self) -> None:
        logger.info("[R-BRIDGE] Shutting down worker thread")
        self._executor.shutdown(wait=True)
        self.bridge.shutdown()


class BlockingRBridge:
    """Synchronous view of an AsyncRBridge for code running off the event loop.

    Calls are queued on the same worker thread as the async facade, so they
    stay serialized with every other request.
    """

    def __init__(self, owner: AsyncRBridge):
        self._owner = owner
        self.settings = owner.bridge.settings

    def _call(self, fn, *args):
        return self._owner._executor.submit(fn, *args).result()

    def describe_dataset(self, name: Optional[str] = None,
                         uploaded_data: Optional[Dict[str, Any]] = None) -> DatasetDescriptor:
        return self._call(self._owner.bridge.describe_dataset, name, uploaded_data)

    def run(self, code: str, dataset_name: Optional[str] = None,
            uploaded_data: Optional[Dict[str, Any]] = None,
            options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        return self._call(self._owner.bridge.run, code, dataset_name, uploaded_data, options)
