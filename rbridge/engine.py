"""
Sandboxed execution of R source against a tabular dataset.

One execute() call:

1. resolves the packages the source loads (plus the baseline set)
2. creates a fresh scope, a child environment of R's global environment
3. binds the dataset to ``df`` in that scope (catalog dataset, inline rows,
   or the synthetic fallback table)
4. opens a PNG capture surface
5. evaluates the source in the scope while capturing console output
6. reads back the last plot page, if anything was drawn
7. assembles an ExecutionResult

A failure in step 5 never skips steps 6 and 7. A missing package reported by
R is installed and the evaluation re-run once, in the same scope.
"""

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from rbridge.config import BridgeSettings
from rbridge.errors import ClassifiedError, EmptyTableError, RConditionError, classify
from rbridge.marshal import DataMarshaler, RowTable
from rbridge.packages import PackageResolver

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOptions:
    """Per-request knobs; unset plot dimensions fall back to the settings."""

    plot_width: Optional[int] = None
    plot_height: Optional[int] = None
    plot_resolution: Optional[int] = None
    recover_missing_packages: bool = True


@dataclass
class ExecutionRequest:
    source_text: str
    dataset_ref: Optional[str] = None
    inline_rows: Optional[RowTable] = None
    options: ExecutionOptions = field(default_factory=ExecutionOptions)


@dataclass
class ExecutionResult:
    success: bool
    output_text: str = ""
    plot: Optional[bytes] = None
    error: Optional[ClassifiedError] = None
    retried: bool = False

    @property
    def plot_base64(self) -> Optional[str]:
        if not self.plot:
            return None
        return base64.b64encode(self.plot).decode("ascii")

    @property
    def plot_data_url(self) -> Optional[str]:
        encoded = self.plot_base64
        return f"data:image/png;base64,{encoded}" if encoded else None

    def to_payload(self) -> Dict[str, Any]:
        """The executeRCode response shape: success plus optional output/plot/error."""
        payload: Dict[str, Any] = {"success": self.success}
        if self.output_text:
            payload["output"] = self.output_text
        if self.plot:
            payload["plot"] = self.plot_data_url
        if self.error is not None:
            payload["error"] = self.error.message
        return payload


class ExecutionEngine:
    def __init__(self, session, resolver: Optional[PackageResolver] = None,
                 marshaler: Optional[DataMarshaler] = None,
                 settings: Optional[BridgeSettings] = None):
        self.session = session
        self.settings = settings or session.settings
        self.resolver = resolver or PackageResolver(session, self.settings)
        self.marshaler = marshaler or DataMarshaler(session, self.settings)
        self._execution_count = 0

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one request. Evaluation failures come back in the result, not raised.

        Raises DatasetNotFoundError for an unknown dataset_ref and
        InitializationError when R cannot be started.
        """
        options = request.options or ExecutionOptions()

        with self.session.exclusive():
            self._execution_count += 1
            exec_id = self._execution_count
            logger.info(f"[R-ENGINE] ========== Execution #{exec_id} ==========")
            logger.debug(f"[R-ENGINE] Code preview (first 200 chars): {request.source_text[:200]}")

            self.session.ensure_initialized()
            self.resolver.begin_request()
            self.resolver.ensure(request.source_text)

            with self.session.new_scope() as scope:
                with self.resolve_table(request) as table:
                    self.session.bind(scope, "df", table)

                result = self._attempt(request.source_text, scope, options, exec_id)

                package = self._recoverable_package(result.error, options)
                if package is not None:
                    logger.info(f"[R-ENGINE] Execution #{exec_id}: installing missing package '{package}'")
                    if self.resolver.install(package):
                        logger.info(f"[R-ENGINE] Execution #{exec_id}: re-running after installing '{package}'")
                        result = self._attempt(request.source_text, scope, options, exec_id)
                        result.retried = True
                    else:
                        logger.warning(f"[R-ENGINE] Execution #{exec_id}: '{package}' could not be installed")

            logger.info(f"[R-ENGINE] Execution #{exec_id} completed: success={result.success}, "
                        f"retried={result.retried}, plot={'yes' if result.plot else 'no'}")
            if result.error is not None:
                logger.warning(f"[R-ENGINE] {result.error.kind.value}: {result.error.message[:500]}")
            return result

    def resolve_table(self, request: ExecutionRequest):
        if request.dataset_ref:
            return self.marshaler.load_named_table(request.dataset_ref)
        if request.inline_rows:
            try:
                return self.marshaler.materialize_inline(request.inline_rows)
            except EmptyTableError as e:
                logger.info(f"[R-ENGINE] {e}; using the synthetic dataset")
        return self.marshaler.synthetic_table()

    def _recoverable_package(self, error: Optional[ClassifiedError], options: ExecutionOptions) -> Optional[str]:
        if error is None or not options.recover_missing_packages:
            return None
        if not error.recoverable:
            return None
        if error.package in self.resolver.attempted:
            logger.info(f"[R-ENGINE] '{error.package}' was already attempted in this request; not retrying")
            return None
        return error.package

    def _attempt(self, source: str, scope, options: ExecutionOptions, exec_id: int) -> ExecutionResult:
        width = options.plot_width or self.settings.plot_width
        height = options.plot_height or self.settings.plot_height
        resolution = options.plot_resolution or self.settings.plot_resolution

        error: Optional[ClassifiedError] = None
        console = None
        surface = None
        started = time.perf_counter()
        try:
            with self.session.console() as console, \
                    self.session.graphics_capture(width, height, resolution) as surface:
                try:
                    self.session.destroy(self.session.evaluate(source, scope))
                except RConditionError as e:
                    error = classify(e)
        except RConditionError as e:
            # Capture device could not be opened or closed.
            logger.error(f"[R-ENGINE] Execution #{exec_id}: graphics capture failed: {e.message}")
            if error is None:
                error = classify(e)

        elapsed = time.perf_counter() - started
        output = console.text if console is not None else ""
        plot = surface.png if surface is not None else None
        logger.info(f"[R-ENGINE] Execution #{exec_id} evaluated in {elapsed:.2f}s "
                    f"({len(output)} chars output, {surface.pages if surface else 0} plot page(s))")

        return ExecutionResult(success=error is None, output_text=output, plot=plot, error=error)
