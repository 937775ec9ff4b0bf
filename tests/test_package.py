"""
Package Tests
=============

Tests that every module of the package compiles cleanly.
"""

import warnings
from pathlib import Path

import pytest

import lane_blocker


PACKAGE_DIR = Path(lane_blocker.__file__).parent
SOURCES = sorted(PACKAGE_DIR.rglob("*.py"))


class TestSources:
    """Source-level checks."""

    def test_package_has_modules(self):
        assert any(path.name == "graph.py" for path in SOURCES)

    @pytest.mark.parametrize(
        "path", SOURCES, ids=[str(p.relative_to(PACKAGE_DIR)) for p in SOURCES]
    )
    def test_compiles_without_warnings(self, path):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(), str(path), "exec")
