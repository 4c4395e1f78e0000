"""
Factory for the process-wide R bridge.

There is one embedded R interpreter per process, so there is one RSession and
one RBridge. get_bridge() creates them lazily on first use.
"""

import logging
import os
import shutil
import threading
from typing import Optional

from rbridge.bridge import RBridge
from rbridge.config import BridgeSettings, load_settings
from rbridge.session import RSession

logger = logging.getLogger(__name__)

# Cache R availability check
_r_available: Optional[bool] = None

_bridge: Optional[RBridge] = None
_bridge_lock = threading.Lock()


def is_r_available() -> bool:
    """Check that an R installation and the rpy2 binding are both present.

    Does not start the interpreter.
    """
    global _r_available

    if _r_available is not None:
        logger.debug(f"[R-BRIDGE] R availability (cached): {_r_available}")
        return _r_available

    r_home = os.environ.get("R_HOME")
    r_path = shutil.which("R")
    if not r_home and not r_path:
        logger.info("[R-BRIDGE] R not found (R_HOME unset and no R binary in PATH)")
        _r_available = False
        return False
    logger.debug(f"[R-BRIDGE] R found: R_HOME={r_home or '(unset)'}, binary={r_path or '(none)'}")

    try:
        import rpy2
        logger.info(f"[R-BRIDGE] rpy2 is installed (version: {getattr(rpy2, '__version__', 'unknown')})")
        _r_available = True
    except ImportError as e:
        logger.warning(f"[R-BRIDGE] rpy2 not installed: {e}")
        _r_available = False

    return _r_available


def create_bridge(settings: Optional[BridgeSettings] = None) -> RBridge:
    """Create a new RBridge with its own RSession. R starts on first use."""
    logger.info("[R-BRIDGE] ============================================")
    logger.info("[R-BRIDGE] Creating R bridge...")
    settings = settings or load_settings()
    logger.info("[R-BRIDGE] --------------------------------------------")

    if not is_r_available():
        logger.warning("[R-BRIDGE] R is not available; requests will fail with InitializationError")

    bridge = RBridge(RSession(settings), settings)
    logger.info("[R-BRIDGE] ============================================")
    return bridge


def get_bridge() -> RBridge:
    """Process-wide bridge, created lazily."""
    global _bridge
    if _bridge is None:
        with _bridge_lock:
            if _bridge is None:
                _bridge = create_bridge()
    return _bridge


def set_bridge(bridge: Optional[RBridge]) -> None:
    """Replace the process-wide bridge (None drops it)."""
    global _bridge
    with _bridge_lock:
        _bridge = bridge
