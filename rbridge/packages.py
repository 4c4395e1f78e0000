"""
Package resolution for submitted R source.

Before evaluation the resolver makes sure every package the source loads with
``library()`` / ``require()``, plus a baseline set, is installed in the
session's library. Installation tries the primary repository first and the
fallback repository second. A failed install is logged and reported, never
raised: the evaluation that follows surfaces the real error if the package
was actually needed.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Set

from rbridge.config import BridgeSettings
from rbridge.errors import RConditionError

logger = logging.getLogger(__name__)

_DEPENDENCY_PATTERN = re.compile(
    r"\b(?:library|require)\s*\(\s*[\"']?([A-Za-z][A-Za-z0-9.]*)[\"']?\s*[,)]"
)


def scan_dependencies(source: str) -> Set[str]:
    """Package names loaded via library(name) or require(name), quoted or bare."""
    return set(_DEPENDENCY_PATTERN.findall(source or ""))


@dataclass
class ResolutionReport:
    requested: List[str]
    baseline: List[str]
    present: List[str] = field(default_factory=list)
    installed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class PackageResolver:
    """Installs missing packages into the session's library."""

    def __init__(self, session, settings: Optional[BridgeSettings] = None):
        self.session = session
        self.settings = settings or session.settings
        self._attempted: Set[str] = set()

    @property
    def attempted(self) -> FrozenSet[str]:
        """Names an install was attempted for since the last begin_request()."""
        return frozenset(self._attempted)

    def begin_request(self) -> None:
        self._attempted.clear()

    def is_installed(self, name: str) -> bool:
        try:
            return bool(self.session.invoke("is_installed", name)[0])
        except RConditionError as e:
            logger.warning(f"[R-PACKAGES] Could not check '{name}': {e.message}")
            return False

    def ensure(self, source: str) -> ResolutionReport:
        requested = sorted(scan_dependencies(source))
        baseline = list(self.settings.baseline_packages)
        report = ResolutionReport(requested=requested, baseline=baseline)

        names = list(dict.fromkeys(baseline + requested))
        logger.info(f"[R-PACKAGES] Resolving {len(names)} package(s): {', '.join(names) or '(none)'}")

        for name in names:
            if self.is_installed(name):
                report.present.append(name)
            elif self.install(name):
                report.installed.append(name)
            else:
                report.failed.append(name)

        if report.installed:
            logger.info(f"[R-PACKAGES] Installed: {', '.join(report.installed)}")
        if report.failed:
            logger.warning(f"[R-PACKAGES] Unavailable after install attempts: {', '.join(report.failed)}")
        return report

    def install(self, name: str) -> bool:
        """Install one package, primary repository first. Returns presence afterwards."""
        self._attempted.add(name)
        repositories = [
            ("primary", self.settings.primary_repo),
            ("fallback", self.settings.fallback_repo),
        ]

        for label, repo in repositories:
            if not repo:
                continue
            logger.info(f"[R-PACKAGES] Installing '{name}' from {label} repository {repo}...")
            try:
                # Keep installer chatter out of any surrounding console capture.
                with self.session.console() as console:
                    ok = bool(self.session.invoke("install_package", name, repo)[0])
            except RConditionError as e:
                logger.warning(f"[R-PACKAGES] Install of '{name}' from {label} raised: {e.message}")
                continue

            if ok:
                logger.info(f"[R-PACKAGES] '{name}' installed from {label} repository")
                return True
            logger.warning(f"[R-PACKAGES] '{name}' not installed from {label} repository")
            if console.text:
                logger.debug(f"[R-PACKAGES] Installer output (last 500 chars): {console.text[-500:]}")

        logger.error(f"[R-PACKAGES] Giving up on '{name}'")
        return False
