"""
Pytest configuration for espcli tests.

Every test runs against fresh process-wide state: an empty event bus, new
observability singletons, settings pointing into ``tmp_path`` and no
ESP-IDF installation unless the ``fake_idf`` fixture provides one.
"""

import logging

import pytest

import core.interactive
import observability
from config import reset_settings, set_settings
from config.settings import PathSettings, Settings
from core.events import emitter
from observability.logger import ROOT_LOGGER_NAME
from services.health import clear_health_cache

ROOT_CMAKELISTS = """cmake_minimum_required(VERSION 3.16)
include($ENV{IDF_PATH}/tools/cmake/project.cmake)
project(blink)
"""

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """
    Configure custom pytest markers.

    This function is called by pytest at the start of the test session
    to register custom markers used in the test suite.
    """
    markers = [
        ("slow", "marks tests as slow (deselect with '-m \"not slow\"')"),
        ("espidf", "marks tests that require a real ESP-IDF installation"),
        ("hardware", "marks tests that require a connected board"),
    ]
    for marker, description in markers:
        config.addinivalue_line("markers", f"{marker}: {description}")


# ============================================================================
# Shared State
# ============================================================================


@pytest.fixture(autouse=True)
def clean_state(tmp_path, monkeypatch):
    """Isolate each test from the user's environment and from other tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("IDF_PATH", raising=False)
    monkeypatch.setenv("SHELL", "/bin/bash")

    set_settings(
        Settings(
            paths=PathSettings(
                esp_path=home / "esp",
                idf_path=home / "esp" / "esp-idf",
                log_dir=tmp_path / "logs",
            )
        )
    )
    emitter.reset()
    observability.reset()
    clear_health_cache()
    core.interactive._active.clear()

    yield

    emitter.reset()
    observability.reset()
    clear_health_cache()
    core.interactive._active.clear()
    reset_settings()
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True


@pytest.fixture
def fake_idf(tmp_path, monkeypatch):
    """Minimal ESP-IDF tree: ``export.sh`` exporting a marker, ``version.txt``."""
    idf_path = tmp_path / "esp-idf"
    idf_path.mkdir()
    (idf_path / "export.sh").write_text("export ESPCLI_IDF_EXPORTED=1\n")
    (idf_path / "version.txt").write_text("v5.2.1\n")
    monkeypatch.setenv("IDF_PATH", str(idf_path))
    return idf_path


@pytest.fixture
def fake_project(tmp_path):
    """Directory that passes ESP-IDF project detection."""
    project_dir = tmp_path / "blink"
    (project_dir / "main").mkdir(parents=True)
    (project_dir / "CMakeLists.txt").write_text(ROOT_CMAKELISTS)
    return project_dir


@pytest.fixture
def events():
    """Collect every event emitted on the bus."""
    collected = []
    unsubscribe = emitter.subscribe_all(collected.append)
    yield collected
    unsubscribe()
