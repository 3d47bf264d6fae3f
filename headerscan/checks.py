from __future__ import annotations

import importlib.util
import logging
import os
import shutil
from typing import Any, Callable, List, Mapping, Tuple

from .builtin_checks import BUILTIN_CHECKS, EXTENDED_CHECKS
from .exceptions import HeaderScanError
from .models import Finding

logger = logging.getLogger(__name__)

Checker = Callable[[Mapping[str, str]], List[Any]]


class CheckRegistry:
    """Ordered, explicit list of checker functions run against normalized headers.

    A checker takes the lower-cased header mapping and returns a list of
    Finding objects (or plain dicts with the same keys). Checker modules in a
    plugin directory expose a ``check`` function or a ``CHECKS`` list.
    """

    def __init__(self) -> None:
        self._checks: List[Tuple[str, Checker]] = []

    def register(self, name: str, checker: Checker) -> None:
        if not callable(checker):
            raise TypeError(f"checker {name!r} is not callable")
        self._checks.append((name, checker))

    def names(self) -> List[str]:
        return [name for name, _ in self._checks]

    def __len__(self) -> int:
        return len(self._checks)

    def run(self, headers: Mapping[str, str]) -> List[Finding]:
        """Run every checker in registration order; a failing checker is skipped."""
        findings: List[Finding] = []
        for name, checker in self._checks:
            try:
                result = checker(headers)
                if not isinstance(result, list):
                    logger.warning("Check %s returned %s, expected a list", name, type(result).__name__)
                    continue
                coerced = [_coerce(item) for item in result]
                findings.extend(coerced)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Check %s failed: %s", name, exc)
        return findings

    def load_file(self, path: str) -> int:
        """Import one checker module and register what it exposes."""
        module_name = "headerscan_plugin_" + os.path.splitext(os.path.basename(path))[0]
        try:
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                raise ImportError(f"cannot load {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to load plugin %s: %s", path, exc)
            return 0

        plugin = os.path.splitext(os.path.basename(path))[0]
        checks = getattr(module, "CHECKS", None)
        if checks is None and callable(getattr(module, "check", None)):
            checks = [module.check]
        if not checks:
            logger.warning("Plugin %s defines neither check() nor CHECKS", path)
            return 0
        for fn in checks:
            self.register(f"{plugin}.{getattr(fn, '__name__', 'check')}", fn)
        return len(checks)

    def load_directory(self, plugin_dir: str) -> int:
        """Register checkers from every ``*.py`` file in ``plugin_dir`` (sorted by name)."""
        if not os.path.isdir(plugin_dir):
            return 0
        loaded = 0
        for name in sorted(list_plugins(plugin_dir)):
            loaded += self.load_file(os.path.join(plugin_dir, name + ".py"))
        return loaded


def _coerce(item: Any) -> Finding:
    if isinstance(item, Finding):
        return item
    return Finding.from_dict(item)


def list_plugins(plugin_dir: str) -> List[str]:
    if not os.path.isdir(plugin_dir):
        return []
    return sorted(
        os.path.splitext(name)[0]
        for name in os.listdir(plugin_dir)
        if name.endswith(".py") and not name.startswith("_")
    )


def install_plugin(path: str, plugin_dir: str) -> str:
    if not os.path.isfile(path):
        raise HeaderScanError(f"Plugin file not found: {path}")
    if not path.endswith(".py"):
        raise HeaderScanError(f"Plugin must be a .py file: {path}")
    os.makedirs(plugin_dir, exist_ok=True)
    dest = os.path.join(plugin_dir, os.path.basename(path))
    shutil.copyfile(path, dest)
    return dest


def remove_plugin(name: str, plugin_dir: str) -> None:
    path = os.path.join(plugin_dir, f"{name}.py")
    if not os.path.isfile(path):
        raise HeaderScanError(f"Plugin not found: {name}")
    os.remove(path)


def build_registry(
    plugin_dir: str = "",
    include_builtin: bool = True,
    include_extended: bool = False,
) -> CheckRegistry:
    registry = CheckRegistry()
    if include_builtin:
        for name, fn in BUILTIN_CHECKS:
            registry.register(name, fn)
    if include_extended:
        for name, fn in EXTENDED_CHECKS:
            registry.register(name, fn)
    if plugin_dir:
        registry.load_directory(plugin_dir)
    return registry

