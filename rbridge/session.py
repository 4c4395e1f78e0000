"""
Embedded R interpreter session.

RSession owns the single R interpreter that rpy2 starts inside this process.
It is the only component that talks to R: source evaluation, structured
function calls, host <-> R conversion, console capture and the PNG capture
surface all go through it.

Objects living in R memory are handed out as RHandle instances and must be
released through the session, either explicitly with destroy() or by leaving
the handle's ``with`` block.
"""

import contextlib
import logging
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from rbridge.config import BridgeSettings
from rbridge.errors import HandleReleasedError, InitializationError, RConditionError

logger = logging.getLogger(__name__)


# Private R helpers, evaluated once into an environment owned by the session.
# User code never sees this environment; values reach it as call arguments,
# never by pasting them into source text.
R_HELPERS = r'''
condition_record <- function(e) {
  pkg <- if (is.list(e)) e[["package"]] else NULL
  structure(
    list(
      message = conditionMessage(e),
      classes = class(e),
      package = if (is.character(pkg) && length(pkg)) pkg[[1L]] else ""
    ),
    class = "rbridge_condition"
  )
}

is_condition <- function(x) inherits(x, "rbridge_condition")

eval_source <- function(text, envir) {
  tryCatch({
    exprs <- parse(text = text, keep.source = FALSE)
    value <- NULL
    for (expr in exprs) {
      res <- withVisible(eval(expr, envir))
      if (res$visible) print(res$value)
      value <- res$value
    }
    invisible(value)
  }, error = condition_record)
}

global_names <- function() ls(globalenv(), all.names = TRUE)

new_scope <- function() new.env(parent = globalenv())

# Globals created through <<- or assign(envir = .GlobalEnv) go with the scope.
clear_scope <- function(envir, baseline) {
  rm(list = ls(envir, all.names = TRUE), envir = envir)
  added <- setdiff(ls(globalenv(), all.names = TRUE), baseline)
  if (length(added)) rm(list = added, envir = globalenv())
  invisible(NULL)
}

bind <- function(envir, name, value) {
  assign(name, value, envir = envir)
  invisible(NULL)
}

open_device <- function(path, width, height, res) {
  args <- list(filename = path, width = width, height = height, res = res)
  if (isTRUE(capabilities("cairo"))) args$type <- "cairo"
  do.call(grDevices::png, args)
  grDevices::dev.cur()
}

close_device <- function(which) {
  if (which %in% grDevices::dev.list()) grDevices::dev.off(which)
  invisible(NULL)
}

use_library <- function(path) {
  dir.create(path, showWarnings = FALSE, recursive = TRUE)
  .libPaths(c(path, .libPaths()))
  invisible(NULL)
}

is_installed <- function(pkg) length(find.package(pkg, quiet = TRUE)) > 0L

install_package <- function(pkg, repos) {
  tryCatch(
    suppressWarnings(
      utils::install.packages(pkg, repos = repos, lib = .libPaths()[[1L]], quiet = TRUE)
    ),
    error = function(e) message("install.packages failed: ", conditionMessage(e))
  )
  is_installed(pkg)
}

dataset_catalog <- function(packages) {
  parts <- lapply(packages, function(pkg) {
    items <- tryCatch(
      suppressWarnings(utils::data(package = pkg)$results),
      error = function(e) NULL
    )
    if (is.null(items) || !nrow(items)) return(NULL)
    item <- items[, "Item"]
    value <- sub(" .*$", "", item)
    file <- ifelse(grepl("(", item, fixed = TRUE), sub("^.*\\((.*)\\)$", "\\1", item), value)
    data.frame(value = value, label = items[, "Title"], file = file, package = pkg,
               stringsAsFactors = FALSE)
  })
  parts <- Filter(Negate(is.null), parts)
  if (!length(parts)) {
    return(data.frame(value = character(), label = character(), file = character(),
                      package = character(), stringsAsFactors = FALSE))
  }
  catalog <- do.call(rbind, parts)
  catalog[!duplicated(catalog$value), , drop = FALSE]
}

coerce_table <- function(x) {
  if (is.data.frame(x)) {
    df <- as.data.frame(x)
    class(df) <- "data.frame"
    return(df)
  }
  if (stats::is.ts(x)) {
    values <- matrix(as.numeric(x), ncol = NCOL(x))
    colnames(values) <- if (!is.null(colnames(x))) colnames(x)
                        else if (NCOL(x) == 1L) "value"
                        else paste0("series", seq_len(NCOL(x)))
    return(data.frame(time = as.numeric(stats::time(x)), values, check.names = FALSE))
  }
  if (is.table(x) || is.matrix(x)) {
    return(as.data.frame(x, stringsAsFactors = FALSE))
  }
  if (is.list(x)) {
    parts <- Filter(function(p) is.matrix(p) || is.data.frame(p), x)
    if (length(parts)) return(coerce_table(parts[[1L]]))
    return(as.data.frame(x, stringsAsFactors = FALSE))
  }
  if (is.atomic(x) || is.factor(x)) {
    df <- data.frame(value = if (is.factor(x)) as.character(x) else as.vector(x),
                     stringsAsFactors = FALSE)
    if (!is.null(names(x)) && !anyDuplicated(names(x))) rownames(df) <- names(x)
    return(df)
  }
  stop("cannot coerce an object of class ", paste(class(x), collapse = "/"), " to a table")
}

as_table <- function(x) {
  df <- tryCatch(coerce_table(x), error = function(e) NULL)
  if (!is.data.frame(df)) {
    df <- data.frame(value = utils::capture.output(print(x)), stringsAsFactors = FALSE)
  }
  df
}

load_dataset <- function(name, packages) {
  catalog <- dataset_catalog(packages)
  hit <- catalog[catalog$value == name, , drop = FALSE]
  if (!nrow(hit)) return(NULL)
  env <- new.env()
  utils::data(list = hit$file[[1L]], package = hit$package[[1L]], envir = env)
  if (!exists(name, envir = env, inherits = FALSE)) return(NULL)
  as_table(get(name, envir = env, inherits = FALSE))
}

synthetic_table <- function() {
  data.frame(
    id = 1:10,
    group = rep(c("A", "B"), times = 5),
    x = c(2.1, 3.4, 1.9, 4.8, 5.2, 3.3, 6.1, 4.4, 7.0, 5.9),
    y = c(1.2, 2.8, 1.5, 4.1, 4.9, 2.7, 6.3, 3.9, 7.4, 5.5),
    stringsAsFactors = FALSE
  )
}

build_table <- function(columns) {
  n <- if (length(columns)) length(columns[[1L]]) else 0L
  structure(columns, names = names(columns), class = "data.frame",
            row.names = .set_row_names(n))
}

host_columns <- function(df) {
  if (.row_names_info(df) > 0L) {
    df <- cbind(data.frame(rowname = rownames(df), stringsAsFactors = FALSE), df)
  }
  columns <- lapply(df, function(col) {
    if (!is.null(dim(col))) col <- apply(as.matrix(col), 1L, paste, collapse = ", ")
    if (is.list(col)) col <- vapply(col, function(v) paste(format(v), collapse = ", "), character(1L))
    if (is.object(col) || !typeof(col) %in% c("logical", "integer", "double", "character")) {
      col <- as.character(col)
    }
    as.vector(col)
  })
  list(names = names(df), columns = unname(columns), nrow = nrow(df))
}

summary_text <- function(x) paste(utils::capture.output(utils::str(x)), collapse = "\n")
'''

VECTOR_KINDS = ("logical", "integer", "double", "character")


class RHandle:
    """Reference to an object living in R memory.

    Released exactly once, through RSession.destroy() or by leaving a
    ``with`` block. Reading ``value`` afterwards raises HandleReleasedError.
    """

    def __init__(self, session: "RSession", value: Any, label: str = "value",
                 on_release: Optional[Callable[[Any], Any]] = None):
        self._session = session
        self._value = value
        self._on_release = on_release
        self._released = False
        self.label = label

    @property
    def released(self) -> bool:
        return self._released

    @property
    def value(self) -> Any:
        if self._released:
            raise HandleReleasedError(f"R handle '{self.label}' has already been released")
        return self._value

    def _release(self) -> None:
        if self._released:
            raise HandleReleasedError(f"R handle '{self.label}' released twice")
        self._released = True
        try:
            if self._on_release is not None:
                self._on_release(self._value)
        finally:
            self._value = None
            self._on_release = None

    def __enter__(self) -> "RHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._released:
            self._session.destroy(self)

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"<RHandle {self.label} ({state})>"


class ConsoleCapture:
    """Collects everything R writes to its console while active."""

    def __init__(self):
        self._chunks: List[str] = []

    def write(self, text: str) -> None:
        self._chunks.append(text)

    @property
    def text(self) -> str:
        return "".join(self._chunks)


class CaptureSurface:
    """Temporary PNG target for a single evaluation."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.pattern = directory / "page-%03d.png"
        self.pages = 0
        self.png: Optional[bytes] = None

    @property
    def drawn(self) -> bool:
        return self.png is not None

    def collect(self) -> None:
        pages = sorted(p for p in self.directory.glob("page-*.png") if p.stat().st_size > 0)
        self.pages = len(pages)
        if pages:
            # The last page holds the final state of the plot.
            self.png = pages[-1].read_bytes()


class RSession:
    """Owner of the process-wide embedded R interpreter."""

    def __init__(self, settings: Optional[BridgeSettings] = None):
        self.settings = settings or BridgeSettings()
        self._lock = threading.RLock()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._closed = False
        self._init_error: Optional[InitializationError] = None
        self._ro = None
        self._helpers = None
        self._null_type = None
        self._r_error = None
        self._live_handles = 0
        self._evaluation_count = 0

    # -- lifecycle ---------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def live_handles(self) -> int:
        return self._live_handles

    def exclusive(self) -> threading.RLock:
        """Request-level guard; hold it for the whole of one request."""
        return self._lock

    def ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            if self._closed:
                raise InitializationError("The R session has been shut down")
            if self._init_error is not None:
                raise self._init_error

            logger.info("[R-SESSION] Starting embedded R interpreter...")
            try:
                self._start()
            except Exception as e:
                logger.error(f"[R-SESSION] Initialization failed: {e}")
                self._init_error = InitializationError(f"Failed to start the embedded R interpreter: {e}")
                raise self._init_error from e
            self._initialized = True

    def _start(self) -> None:
        import rpy2.robjects as ro
        from rpy2.rinterface_lib.embedded import RRuntimeError
        from rpy2.rinterface_lib.sexp import NULLType

        self._ro = ro
        self._r_error = RRuntimeError
        self._null_type = NULLType

        helpers = ro.r["new.env"]()
        ro.r["eval"](ro.r["parse"](text=R_HELPERS), envir=helpers)
        self._helpers = helpers
        logger.info("[R-SESSION] Bridge helpers loaded")

        ro.r["options"](warn=1)
        if self.settings.library_dir:
            helpers["use_library"](self.settings.library_dir)
            logger.info(f"[R-SESSION] User library: {self.settings.library_dir}")

        logger.info(f"[R-SESSION] {ro.r['R.version.string'][0]} ready")

    def shutdown(self) -> None:
        """Drop the session's R state. R itself cannot be restarted in-process."""
        with self._lock:
            if self._live_handles:
                logger.warning(f"[R-SESSION] Shutting down with {self._live_handles} live handle(s)")
            self._helpers = None
            self._initialized = False
            self._closed = True
            logger.info("[R-SESSION] Session shut down")

    # -- handles -------------------------------------------------------------

    def _track(self, value: Any, label: str, on_release: Optional[Callable[[Any], Any]] = None) -> RHandle:
        self._live_handles += 1
        return RHandle(self, value, label, on_release)

    def destroy(self, handle: RHandle) -> None:
        """Release an RHandle. The only sanctioned way to free R-resident values."""
        handle._release()
        self._live_handles -= 1

    def is_null(self, handle: RHandle) -> bool:
        return isinstance(handle.value, self._null_type)

    # -- evaluation ------------------------------------------------------------

    def evaluate(self, source: str, envir: Optional[RHandle] = None) -> RHandle:
        """Evaluate R source text, auto-printing visible values.

        Raises RConditionError carrying the R condition's message and classes.
        """
        self.ensure_initialized()
        self._evaluation_count += 1
        env = envir.value if envir is not None else self._ro.globalenv

        started = time.perf_counter()
        try:
            result = self._helpers["eval_source"](source, env)
        except self._r_error as e:
            raise RConditionError(str(e)) from e
        finally:
            elapsed = time.perf_counter() - started
            if elapsed > self.settings.slow_evaluation_seconds:
                logger.warning(f"[R-SESSION] Evaluation #{self._evaluation_count} took {elapsed:.1f}s")

        if self._helpers["is_condition"](result)[0]:
            record = self._convert(result)
            raise RConditionError(record["message"][0], record["classes"], record["package"][0])

        return self._track(result, label="evaluation")

    def call(self, function: str, *args: Any, **kwargs: Any) -> RHandle:
        """Call a bridge helper (or any R function by name) with bound arguments."""
        self.ensure_initialized()
        fn = self._function(function)
        try:
            value = fn(*[self._unwrap(a) for a in args],
                       **{k: self._unwrap(v) for k, v in kwargs.items()})
        except self._r_error as e:
            raise RConditionError(str(e)) from e
        return self._track(value, label=function)

    def invoke(self, function: str, *args: Any, **kwargs: Any) -> Any:
        """call() followed by conversion to Python and release of the result."""
        with self.call(function, *args, **kwargs) as handle:
            return self.to_python(handle)

    def _function(self, name: str):
        if name in self._helpers:
            return self._helpers[name]
        return self._ro.r[name]

    @staticmethod
    def _unwrap(value: Any) -> Any:
        return value.value if isinstance(value, RHandle) else value

    # -- scopes --------------------------------------------------------------

    def new_scope(self) -> RHandle:
        """Fresh child environment of the global environment.

        Releasing the scope also removes any global the request created.
        """
        self.ensure_initialized()
        baseline = self._helpers["global_names"]()
        env = self._helpers["new_scope"]()
        clear = self._helpers["clear_scope"]
        return self._track(env, label="scope", on_release=lambda e: clear(e, baseline))

    def bind(self, scope: RHandle, name: str, value: Any) -> None:
        self._helpers["bind"](scope.value, name, self._unwrap(value))

    # -- conversion ------------------------------------------------------------

    def vector(self, kind: str, values: Sequence[Any]) -> RHandle:
        """Build an atomic R vector; None becomes NA."""
        self.ensure_initialized()
        ro = self._ro
        if kind == "logical":
            vec = ro.BoolVector([ro.NA_Logical if v is None else bool(v) for v in values])
        elif kind == "integer":
            vec = ro.IntVector([ro.NA_Integer if v is None else int(v) for v in values])
        elif kind == "double":
            vec = ro.FloatVector([ro.NA_Real if v is None else float(v) for v in values])
        elif kind == "character":
            vec = ro.StrVector([ro.NA_Character if v is None else str(v) for v in values])
        else:
            raise ValueError(f"Unknown vector kind: {kind} (expected one of {VECTOR_KINDS})")
        return self._track(vec, label=f"{kind} vector")

    def named_list(self, items: Mapping[str, Any]) -> RHandle:
        self.ensure_initialized()
        lst = self._ro.ListVector({name: self._unwrap(value) for name, value in items.items()})
        return self._track(lst, label="list")

    def to_python(self, handle: RHandle) -> Any:
        return self._convert(handle.value)

    def _convert(self, obj: Any) -> Any:
        from rpy2 import rinterface as ri

        if isinstance(obj, self._null_type):
            return None
        if isinstance(obj, ri.ListSexpVector):
            items = [self._convert(item) for item in obj]
            names = self._ro.baseenv["names"](obj)
            if isinstance(names, ri.StrSexpVector) and all(names):
                return dict(zip(names, items))
            return items
        if isinstance(obj, (ri.BoolSexpVector, ri.IntSexpVector, ri.FloatSexpVector, ri.StrSexpVector)):
            missing = self._ro.baseenv["is.na"](obj)
            return [None if m else v for v, m in zip(obj, missing)]
        raise TypeError(f"Cannot convert R object of type {type(obj).__name__} to Python")

    # -- console and graphics ------------------------------------------------

    @contextlib.contextmanager
    def console(self) -> Iterator[ConsoleCapture]:
        """Capture R console output (regular and warning/error channels)."""
        self.ensure_initialized()
        from rpy2.rinterface_lib import callbacks

        capture = ConsoleCapture()
        with callbacks.obj_in_module(callbacks, "consolewrite_print", capture.write), \
                callbacks.obj_in_module(callbacks, "consolewrite_warnerror", capture.write):
            yield capture

    @contextlib.contextmanager
    def graphics_capture(self, width: int, height: int, resolution: int) -> Iterator[CaptureSurface]:
        """Open a PNG device for the duration of the block; always closed on exit."""
        with tempfile.TemporaryDirectory(prefix="rbridge-plot-") as tmp:
            surface = CaptureSurface(Path(tmp))
            device = self.invoke("open_device", str(surface.pattern), int(width), int(height), int(resolution))[0]
            logger.debug(f"[R-SESSION] Opened capture device {device} in {tmp}")
            try:
                yield surface
            finally:
                try:
                    self.invoke("close_device", device)
                finally:
                    surface.collect()
