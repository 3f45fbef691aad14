"""Recognize known failures in idf.py and esptool output.

Each ``ErrorPattern`` is a set of regexes for one failure signature plus the
hints shown to the user when it matches. Patterns are tried in registration
order and the first match decides the category of the diagnosis.
"""

import re
from dataclasses import dataclass, field
from enum import IntEnum

from . import get_logger

logger = get_logger("observability.diagnostics")


class Severity(IntEnum):
    INFO = 0
    WARNING = 1
    ERROR = 2

    def __str__(self) -> str:
        return self.name.lower()


@dataclass
class ErrorPattern:
    """One failure signature.

    Attributes:
        name: Unique identifier, also used to replace a registered pattern.
        regexes: Case-insensitive expressions searched line by line.
        category: environment, build, flash or hardware.
        suggestions: Hints for the user, most useful first.
        severity: How bad a match is.
    """

    name: str
    regexes: list[str]
    category: str
    suggestions: list[str]
    severity: Severity = Severity.ERROR
    _compiled: list[re.Pattern] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        for regex in self.regexes:
            try:
                self._compiled.append(re.compile(regex, re.IGNORECASE))
            except re.error as e:
                logger.warning(
                    "Ignoring invalid pattern", pattern=self.name, regex=regex, reason=str(e)
                )

    def search(self, output: str) -> str | None:
        """First output line matching any of the regexes."""
        for line in output.splitlines():
            if any(compiled.search(line) for compiled in self._compiled):
                return line.strip()
        return None


@dataclass
class Finding:
    pattern: ErrorPattern
    line: str


@dataclass
class Diagnosis:
    findings: list[Finding] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.findings)

    @property
    def patterns(self) -> list[str]:
        return [finding.pattern.name for finding in self.findings]

    @property
    def category(self) -> str:
        return self.findings[0].pattern.category if self.findings else "unknown"

    @property
    def severity(self) -> Severity:
        return max((f.pattern.severity for f in self.findings), default=Severity.INFO)

    @property
    def suggestions(self) -> list[str]:
        """Suggestions of every finding, duplicates dropped."""
        return list(dict.fromkeys(s for f in self.findings for s in f.pattern.suggestions))

    def to_dict(self) -> dict:
        return {
            "patterns": self.patterns,
            "category": self.category,
            "severity": str(self.severity),
            "suggestions": self.suggestions,
            "evidence": [finding.line for finding in self.findings],
        }


BUILTIN_PATTERNS = [
    ErrorPattern(
        "idf_not_exported",
        [
            r"IDF_PATH (environment variable )?(is )?not set",
            r"idf\.py: (command )?not found",
        ],
        "environment",
        [
            "Install ESP-IDF: espcli install",
            "Run espcli doctor to see which part of the toolchain is missing",
        ],
    ),
    ErrorPattern(
        "idf_python_env",
        [
            r"python (virtual )?environment .*(not found|does not exist)",
            r"No module named ['\"]?(esptool|serial|idf_component_manager)",
        ],
        "environment",
        [
            "Re-run install.sh in the ESP-IDF directory to recreate the Python environment",
            "Reinstall ESP-IDF: espcli install",
        ],
    ),
    ErrorPattern(
        "target_mismatch",
        [
            r"sdkconfig .* was generated for target",
            r"does not match the target .* specified by IDF_TARGET",
        ],
        "build",
        [
            "Set the target explicitly: espcli build --target <chip>",
            "Remove sdkconfig after changing the target",
        ],
    ),
    ErrorPattern(
        "missing_header",
        [r"fatal error: .*: No such file or directory"],
        "build",
        [
            "Add the component providing the header to REQUIRES in main/CMakeLists.txt",
            "Rebuild from scratch: espcli build --clean",
        ],
    ),
    ErrorPattern(
        "undefined_symbol",
        [r"undefined reference to", r"multiple definition of"],
        "build",
        [
            "List every source file in SRCS of idf_component_register",
            "Declare app_main with C linkage in C++ sources",
        ],
    ),
    ErrorPattern(
        "memory_overflow",
        [r"region `?\w+'? overflowed by", r"will not fit in region"],
        "build",
        [
            "Check what takes the space: idf.py size-components",
            "Move constant tables to flash with const",
        ],
    ),
    ErrorPattern(
        "app_too_large",
        [r"too small for binary", r"app partition is too small"],
        "build",
        ["Pick a larger partition table in idf.py menuconfig"],
    ),
    ErrorPattern(
        "unknown_component",
        [r"Failed to resolve component", r"unknown component"],
        "build",
        ["Check the component name in REQUIRES", "Refresh dependencies: idf.py reconfigure"],
    ),
    ErrorPattern(
        "wrong_chip",
        [r"This chip is \S+,? not \S+", r"Wrong --chip argument"],
        "flash",
        [
            "Rebuild for the connected chip: espcli build --target <chip>",
            "See which chip is attached: espcli devices",
        ],
    ),
    ErrorPattern(
        "flash_transfer",
        [r"Packet content transfer stopped", r"Timed out waiting for packet"],
        "flash",
        [
            "Flash at a lower baud rate: espcli flash --baud 115200",
            "Connect the board directly instead of through a hub",
        ],
        Severity.WARNING,
    ),
    ErrorPattern(
        "no_connection",
        [r"Failed to connect", r"No serial data received"],
        "hardware",
        [
            "Hold BOOT and tap RESET to enter download mode",
            "Check the USB cable carries data",
            "Close any monitor that holds the port",
        ],
    ),
    ErrorPattern(
        "port_unavailable",
        [r"could not open port", r"Resource busy", r"Errno 13\]? Permission denied"],
        "hardware",
        [
            "Check the port name: espcli devices",
            "Add yourself to the dialout group: sudo usermod -a -G dialout $USER",
        ],
    ),
]


class DiagnosticEngine:
    """Match tool output against registered ``ErrorPattern``s.

    Example:
        diagnosis = get_diagnostics().diagnose(build_output)
        for hint in diagnosis.suggestions:
            print(hint)
    """

    def __init__(self, extra_patterns: list[ErrorPattern] | None = None):
        self.patterns = list(BUILTIN_PATTERNS)
        for pattern in extra_patterns or []:
            self.register(pattern)

    def register(self, pattern: ErrorPattern) -> None:
        """Add ``pattern``. One with the same name is replaced in place."""
        for index, existing in enumerate(self.patterns):
            if existing.name == pattern.name:
                self.patterns[index] = pattern
                return
        self.patterns.append(pattern)

    def diagnose(self, output: str) -> Diagnosis:
        findings = []
        for pattern in self.patterns:
            line = pattern.search(output)
            if line is not None:
                findings.append(Finding(pattern, line))
        return Diagnosis(findings)

    def patterns_for(self, category: str) -> list[ErrorPattern]:
        return [pattern for pattern in self.patterns if pattern.category == category]
