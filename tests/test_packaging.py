"""Packaging tests: the arbor tree must be found without __init__.py files.

Only arbor.core and arbor.config carry an __init__.py; arbor itself,
arbor.cli and arbor.utils are namespace packages.
"""

from pathlib import Path

import pytest

PYPROJECT = Path("pyproject.toml")
EXPECTED_PACKAGES = {"arbor", "arbor.cli", "arbor.config", "arbor.core", "arbor.utils"}


def _find_config() -> dict:
    tomllib = pytest.importorskip("tomllib")
    with PYPROJECT.open("rb") as f:
        return tomllib.load(f)["tool"]["setuptools"]["packages"]["find"]


class TestPackageDiscovery:
    def test_find_enables_namespaces(self):
        find = _find_config()

        assert find["where"] == ["src"]
        assert find["namespaces"] is True

    def test_every_module_directory_is_discovered(self):
        setuptools = pytest.importorskip("setuptools")
        find = _find_config()

        found = set(setuptools.find_namespace_packages(find["where"][0], include=find["include"]))

        assert EXPECTED_PACKAGES <= found

    def test_console_script_module_is_packaged(self):
        tomllib = pytest.importorskip("tomllib")
        with PYPROJECT.open("rb") as f:
            script = tomllib.load(f)["project"]["scripts"]["arbor"]

        module = script.split(":")[0]

        assert module.rsplit(".", 1)[0] in EXPECTED_PACKAGES
        assert Path("src", *module.split(".")).with_suffix(".py").is_file()
