"""File contents for a new ESP-IDF project."""

import json
from string import Template

ROOT_CMAKELISTS = Template(
    """cmake_minimum_required(VERSION 3.16)
include($$ENV{IDF_PATH}/tools/cmake/project.cmake)
project($name)
"""
)

MAIN_CMAKELISTS = Template(
    """idf_component_register(SRCS "$main_file"
                       INCLUDE_DIRS ".")
"""
)

C_MAIN = Template(
    """#include <stdio.h>
#include "freertos/FreeRTOS.h"
#include "freertos/task.h"

void app_main(void)
{
    while (1) {
        printf("Hello from $name!\\n");
        vTaskDelay(pdMS_TO_TICKS(1000));
    }
}
"""
)

CPP_MAIN = Template(
    """#include <cstdio>
#include "freertos/FreeRTOS.h"
#include "freertos/task.h"

extern "C" void app_main(void)
{
    while (true) {
        printf("Hello from $name!\\n");
        vTaskDelay(pdMS_TO_TICKS(1000));
    }
}
"""
)

GITIGNORE = """build/
sdkconfig
sdkconfig.old
*.pyc
__pycache__/
.DS_Store
"""

README = Template(
    """# $name

ESP-IDF project targeting $target.

## Build

```bash
espcli build
```

## Flash

```bash
espcli flash --port PORT
```

## Monitor

```bash
espcli monitor --port PORT
```
"""
)


def root_cmakelists(name: str) -> str:
    return ROOT_CMAKELISTS.substitute(name=name)


def main_cmakelists(main_file: str) -> str:
    return MAIN_CMAKELISTS.substitute(main_file=main_file)


def main_source(name: str, language: str) -> str:
    template = CPP_MAIN if language == "cpp" else C_MAIN
    return template.substitute(name=name)


def readme(name: str, target: str) -> str:
    return README.substitute(name=name, target=target)


def vscode_cpp_properties() -> str:
    """IntelliSense settings: compile_commands.json after the first build,
    include paths of the usual IDF locations before it."""
    config = {
        "version": 4,
        "configurations": [
            {
                "name": "ESP-IDF",
                "compileCommands": "${workspaceFolder}/build/compile_commands.json",
                "includePath": [
                    "${workspaceFolder}/**",
                    "${env:HOME}/esp/esp-idf/components/**",
                    "${env:IDF_PATH}/components/**",
                ],
                "browse": {
                    "path": [
                        "${workspaceFolder}",
                        "${env:HOME}/esp/esp-idf/components",
                        "${env:IDF_PATH}/components",
                    ],
                    "limitSymbolsToIncludedHeaders": False,
                },
                "defines": [],
                "intelliSenseMode": "gcc-x64",
                "cStandard": "c17",
                "cppStandard": "c++17",
            }
        ],
    }
    return json.dumps(config, indent=2) + "\n"
