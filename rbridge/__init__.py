from .bridge import AsyncRBridge, RBridge
from .call_llm import call_llm
from .engine import ExecutionOptions, ExecutionRequest, ExecutionResult
from .errors import ClassifiedError, DatasetNotFoundError, ErrorKind, InitializationError
from .factory import create_bridge, get_bridge
from .parse_code import parse_code_block

__all__ = [
    "AsyncRBridge",
    "RBridge",
    "call_llm",
    "ExecutionOptions",
    "ExecutionRequest",
    "ExecutionResult",
    "ClassifiedError",
    "DatasetNotFoundError",
    "ErrorKind",
    "InitializationError",
    "create_bridge",
    "get_bridge",
    "parse_code_block",
]
