from __future__ import annotations

import importlib

import pytest


CRITICAL_MODULES = [
    "imagerouter.cli",
    "imagerouter.core.dispatcher",
    "imagerouter.core.selection",
    "imagerouter.core.image_backends.registry",
    "imagerouter.core.resilience.context",
]


def test_suite_collects_imports():
    failures = []
    for module in CRITICAL_MODULES:
        try:
            importlib.import_module(module)
        except ImportError as exc:
            failures.append(f"{module}: {exc.__class__.__name__}: {exc}")
    if failures:
        pytest.fail("Critical module import failures:\n" + "\n".join(failures))
