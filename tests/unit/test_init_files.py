"""
Unit tests for __init__.py files

Ensures version and __all__ attributes are defined and every listed
subpackage imports without errors.
"""

import importlib

import pytest

import reconciliation


class TestReconciliationInit:
    """Test src/reconciliation/__init__.py"""

    def test_version_attribute(self):
        assert reconciliation.__version__ == "1.0.0"

    def test_all_lists_subpackages(self):
        assert reconciliation.__all__ == [
            "hashing", "dataset", "recrun", "pipeline", "scheduler", "api", "report", "cli",
        ]

    @pytest.mark.parametrize("module_name", reconciliation.__all__)
    def test_submodules_import(self, module_name):
        module = importlib.import_module(f"reconciliation.{module_name}")

        for name in getattr(module, "__all__", []):
            assert hasattr(module, name), f"{module_name}.{name} listed in __all__ but missing"


class TestUtilsInit:
    @pytest.mark.parametrize("module_name", ["db_pool", "logging", "metrics", "tracing"])
    def test_exports_resolve(self, module_name):
        module = importlib.import_module(f"utils.{module_name}")

        for name in module.__all__:
            assert hasattr(module, name)
