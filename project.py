"""ESP-IDF project detection.

A directory is an ESP-IDF project when its ``CMakeLists.txt`` references the
IDF build system (``$ENV{IDF_PATH}`` or ``idf_component_register``).
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from core.exceptions import not_idf_project
from core.result import Result

PROJECT_MARKERS = ("$ENV{IDF_PATH}", "idf_component_register")

_SDKCONFIG_TARGET = re.compile(r'^CONFIG_IDF_TARGET="(\w+)"', re.MULTILINE)


def is_idf_project(directory: str | Path) -> bool:
    """Check whether ``directory`` holds an ESP-IDF ``CMakeLists.txt``."""
    cmake_path = Path(directory) / "CMakeLists.txt"
    try:
        content = cmake_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False
    return any(marker in content for marker in PROJECT_MARKERS)


def find_project_root(start: str | Path | None = None) -> Result[Path]:
    """Walk from ``start`` up to the filesystem root looking for a project.

    Returns:
        Result with the nearest enclosing project root, or NOT_IDF_PROJECT.
    """
    start_dir = Path(start or os.getcwd()).resolve()
    for candidate in (start_dir, *start_dir.parents):
        if is_idf_project(candidate):
            return Result.ok(candidate)
    return Result.fail(not_idf_project(str(start_dir)))


@dataclass(frozen=True)
class ProjectInfo:
    """A project directory as seen from where a server was started.

    ``root`` is the enclosing project, or the start directory itself with
    ``is_valid`` False when there is none.
    """

    root: Path
    is_valid: bool = False

    @classmethod
    def detect(cls, cwd: Path | None = None) -> "ProjectInfo":
        work_dir = Path(cwd or os.getcwd()).resolve()
        found = find_project_root(work_dir)
        if found:
            return cls(found.data, True)
        return cls(work_dir, False)

    @property
    def cmake_path(self) -> Path:
        return self.root / "CMakeLists.txt"

    @property
    def sdkconfig_path(self) -> Path:
        return self.root / "sdkconfig"

    @property
    def build_dir(self) -> Path:
        return self.root / "build"

    def configured_target(self) -> str | None:
        """Chip the project was last configured for, read from ``sdkconfig``."""
        try:
            content = self.sdkconfig_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        match = _SDKCONFIG_TARGET.search(content)
        return match.group(1) if match else None

    def explain(self) -> tuple[str, list[str]]:
        """Why ``root`` is not a project and what to try, empty when it is one."""
        if self.is_valid:
            return "", []
        if not self.cmake_path.exists():
            return f"No CMakeLists.txt in {self.root}", [
                "Start the server from inside an ESP-IDF project",
                "Create a new project: espcli init <name>",
            ]
        return f"{self.cmake_path} does not use the ESP-IDF build system", [
            "Include $ENV{IDF_PATH}/tools/cmake/project.cmake in CMakeLists.txt",
            "Create a new project: espcli init <name>",
        ]
