"""Project scaffolding for ``espcli init``."""

from dataclasses import dataclass
from pathlib import Path

from config.constants import CONFIG_FILENAME, DEFAULT_FLASH_BAUD, DEFAULT_MONITOR_BAUD
from core.exceptions import InitError
from core.result import Result
from core.types import InitConfig, InitResult
from services.config import ProjectConfig, serialize_config

from . import files


@dataclass
class TemplateFile:
    path: str
    content: str


def generate_project_files(config: InitConfig) -> list[TemplateFile]:
    """Files of a new project, paths relative to the project directory."""
    main_file = "main.cpp" if config.language == "cpp" else "main.c"
    project_config = ProjectConfig(
        target=config.target,
        flash_baud=DEFAULT_FLASH_BAUD,
        monitor_baud=DEFAULT_MONITOR_BAUD,
    )
    return [
        TemplateFile("CMakeLists.txt", files.root_cmakelists(config.name)),
        TemplateFile("main/CMakeLists.txt", files.main_cmakelists(main_file)),
        TemplateFile(f"main/{main_file}", files.main_source(config.name, config.language)),
        TemplateFile(".gitignore", files.GITIGNORE),
        TemplateFile("README.md", files.readme(config.name, config.target)),
        TemplateFile(".vscode/c_cpp_properties.json", files.vscode_cpp_properties()),
        TemplateFile(CONFIG_FILENAME, serialize_config(project_config)),
    ]


def create_project(config: InitConfig) -> Result[InitResult]:
    """Write a new project under ``config.directory / config.name``.

    Returns:
        Result with the project path and the files written, or INIT_FAILED
        when the directory already holds files or cannot be written.
    """
    project_path = config.project_path.resolve()
    if project_path.exists() and (not project_path.is_dir() or any(project_path.iterdir())):
        return Result.fail(InitError(f"Directory already exists and is not empty: {project_path}"))

    created: list[str] = []
    try:
        for template in generate_project_files(config):
            target = project_path / template.path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(template.content, encoding="utf-8")
            created.append(template.path)
    except OSError as e:
        return Result.fail(InitError(f"Failed to create project: {e}", cause=e))

    return Result.ok(InitResult(project_path=project_path, files=created))


__all__ = ["TemplateFile", "create_project", "generate_project_files"]
