"""Exception hierarchy for espcli.

Every failure an operation can report is an ``ESPCLIError`` carrying a
machine-readable ``ErrorCode``. Codes group into a coarse ``ErrorKind`` so
callers can react to "something is missing" without enumerating codes.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse failure taxonomy shared by every error code."""

    NOT_FOUND = "NOT_FOUND"
    NOT_INSTALLED = "NOT_INSTALLED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    COMMAND_FAILED = "COMMAND_FAILED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


class ErrorCode(str, Enum):
    """Machine-readable error codes reported on ``error`` events."""

    IDF_NOT_FOUND = "IDF_NOT_FOUND"
    IDF_NOT_INSTALLED = "IDF_NOT_INSTALLED"
    IDF_PYTHON_NOT_FOUND = "IDF_PYTHON_NOT_FOUND"
    IDF_VALIDATION_FAILED = "IDF_VALIDATION_FAILED"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    NOT_IDF_PROJECT = "NOT_IDF_PROJECT"
    BUILD_FAILED = "BUILD_FAILED"
    FLASH_FAILED = "FLASH_FAILED"
    MONITOR_FAILED = "MONITOR_FAILED"
    CLEAN_FAILED = "CLEAN_FAILED"
    INIT_FAILED = "INIT_FAILED"
    INSTALL_FAILED = "INSTALL_FAILED"
    CONFIG_READ_FAILED = "CONFIG_READ_FAILED"
    CONFIG_WRITE_FAILED = "CONFIG_WRITE_FAILED"
    SHELL_UNSUPPORTED = "SHELL_UNSUPPORTED"
    SHELL_CONFIG_FAILED = "SHELL_CONFIG_FAILED"
    COMMAND_FAILED = "COMMAND_FAILED"
    COMMAND_NOT_FOUND = "COMMAND_NOT_FOUND"
    PORT_NOT_FOUND = "PORT_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_READ_FAILED = "FILE_READ_FAILED"
    FILE_WRITE_FAILED = "FILE_WRITE_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


CODE_KINDS: dict[ErrorCode, ErrorKind] = {
    ErrorCode.IDF_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.PROJECT_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.NOT_IDF_PROJECT: ErrorKind.NOT_FOUND,
    ErrorCode.COMMAND_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.PORT_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.FILE_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.IDF_NOT_INSTALLED: ErrorKind.NOT_INSTALLED,
    ErrorCode.IDF_PYTHON_NOT_FOUND: ErrorKind.NOT_INSTALLED,
    ErrorCode.IDF_VALIDATION_FAILED: ErrorKind.VALIDATION_FAILED,
    ErrorCode.SHELL_UNSUPPORTED: ErrorKind.VALIDATION_FAILED,
    ErrorCode.BUILD_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.FLASH_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.MONITOR_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.CLEAN_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.INIT_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.INSTALL_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.COMMAND_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.PERMISSION_DENIED: ErrorKind.COMMAND_FAILED,
    ErrorCode.CONFIG_READ_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.CONFIG_WRITE_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.SHELL_CONFIG_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.FILE_READ_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.FILE_WRITE_FAILED: ErrorKind.COMMAND_FAILED,
    ErrorCode.TIMEOUT: ErrorKind.TIMEOUT,
    ErrorCode.CANCELLED: ErrorKind.UNKNOWN,
    ErrorCode.UNKNOWN: ErrorKind.UNKNOWN,
}


class ESPCLIError(Exception):
    """Base exception for all espcli errors.

    Attributes:
        message: Human-readable error description.
        details: Additional error context (optional).
        code: Machine-readable error code.
        cause: Underlying exception that triggered this error, if any.
    """

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        details: str | None = None,
        code: ErrorCode | None = None,
        cause: BaseException | None = None,
    ):
        """Initialize espcli error.

        Args:
            message: Human-readable error description.
            details: Additional error context.
            code: Error code, defaults to the class default.
            cause: Original exception, preserved for diagnostics.
        """
        self.message = message
        self.details = details
        self.code = ErrorCode(code) if code is not None else self.default_code
        self.cause = cause
        super().__init__(self._format_message())
        if cause is not None:
            self.__cause__ = cause

    def _format_message(self) -> str:
        """Format error message with details."""
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message

    @property
    def kind(self) -> ErrorKind:
        """Coarse failure kind for this error's code."""
        return CODE_KINDS.get(self.code, ErrorKind.UNKNOWN)

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "message": self._format_message(),
            "code": self.code.value,
            "kind": self.kind.value,
        }


class ToolchainError(ESPCLIError):
    """ESP-IDF is missing, incomplete or fails validation.

    Examples:
        - IDF_PATH not set and no default install found
        - export.sh missing from the install directory
        - IDF python environment not created
    """

    default_code = ErrorCode.IDF_NOT_FOUND


class ProjectError(ESPCLIError):
    """Directory is not an ESP-IDF project."""

    default_code = ErrorCode.NOT_IDF_PROJECT


class BuildError(ESPCLIError):
    """Error during firmware build process."""

    default_code = ErrorCode.BUILD_FAILED


class CleanError(ESPCLIError):
    """Error while removing build artifacts."""

    default_code = ErrorCode.CLEAN_FAILED


class HardwareError(ESPCLIError):
    """Error related to the serial device.

    Examples:
        - Port not found or busy
        - USB permissions issue
        - Device not in download mode
    """

    default_code = ErrorCode.PORT_NOT_FOUND


class FlashError(HardwareError):
    """Error during firmware flashing operation."""

    default_code = ErrorCode.FLASH_FAILED


class MonitorError(HardwareError):
    """Error during serial monitor operation."""

    default_code = ErrorCode.MONITOR_FAILED


class CommandError(ESPCLIError):
    """External command could not be spawned or reported failure."""

    default_code = ErrorCode.COMMAND_FAILED


class ConfigurationError(ESPCLIError):
    """Project or shell configuration could not be read or written."""

    default_code = ErrorCode.CONFIG_WRITE_FAILED


class FileOperationError(ESPCLIError):
    """Filesystem operation failed."""

    default_code = ErrorCode.FILE_WRITE_FAILED


class InstallError(ESPCLIError):
    """ESP-IDF installation failed."""

    default_code = ErrorCode.INSTALL_FAILED


class InitError(ESPCLIError):
    """Project scaffolding failed."""

    default_code = ErrorCode.INIT_FAILED


class OperationTimeoutError(ESPCLIError):
    """A bounded external call exceeded its deadline."""

    default_code = ErrorCode.TIMEOUT


class OperationCancelledError(ESPCLIError):
    """Operation was cancelled before it finished."""

    default_code = ErrorCode.CANCELLED


def idf_not_found(path: str | None = None) -> ToolchainError:
    if path:
        return ToolchainError(f"ESP-IDF not found at {path}. Run `espcli install` first.")
    return ToolchainError("ESP-IDF not found. Run `espcli install` first.")


def idf_not_installed() -> ToolchainError:
    return ToolchainError(
        "ESP-IDF not installed. Run `espcli install` first.", code=ErrorCode.IDF_NOT_INSTALLED
    )


def idf_python_not_found() -> ToolchainError:
    return ToolchainError(
        "ESP-IDF Python environment not found. Run `espcli install` first.",
        code=ErrorCode.IDF_PYTHON_NOT_FOUND,
    )


def not_idf_project(directory: str) -> ProjectError:
    return ProjectError(f"Not an ESP-IDF project directory: {directory}")


def command_failed(command: str, reason: str, cause: BaseException | None = None) -> CommandError:
    return CommandError(f"Failed to execute {command}: {reason}", cause=cause)


def wrap_error(error: BaseException, fallback_code: ErrorCode = ErrorCode.UNKNOWN) -> ESPCLIError:
    """Convert any exception into an ``ESPCLIError``, keeping the original as cause.

    Args:
        error: Exception to wrap.
        fallback_code: Code used when ``error`` is not already an ESPCLIError.

    Returns:
        ESPCLIError instance.
    """
    if isinstance(error, ESPCLIError):
        return error
    message = str(error) or type(error).__name__
    return ESPCLIError(message, code=fallback_code, cause=error)


# Map error types to user-friendly descriptions
ERROR_DESCRIPTIONS = {
    "ESPCLIError": "Unexpected espcli error",
    "ToolchainError": "ESP-IDF toolchain is missing or incomplete",
    "ProjectError": "Directory is not an ESP-IDF project",
    "BuildError": "Firmware build compilation/linking error",
    "CleanError": "Build artifact cleanup error",
    "HardwareError": "Serial device connection error",
    "FlashError": "Firmware flashing operation error",
    "MonitorError": "Serial monitor operation error",
    "CommandError": "External command failed",
    "ConfigurationError": "Project or shell configuration error",
    "FileOperationError": "Filesystem operation error",
    "InstallError": "ESP-IDF installation error",
    "InitError": "Project creation error",
    "OperationTimeoutError": "External call timed out",
    "OperationCancelledError": "Operation cancelled",
}


def get_error_description(error: Exception) -> str:
    """Get user-friendly description for an error.

    Example:
        >>> get_error_description(BuildError("Build failed"))
        'Firmware build compilation/linking error'
    """
    return ERROR_DESCRIPTIONS.get(type(error).__name__, "Unknown error type")


def get_error_suggestion(error: Exception) -> str | None:
    """Get actionable suggestion for resolving an error.

    Args:
        error: Exception instance.

    Returns:
        Actionable suggestion or None if no specific suggestion available.
    """
    if isinstance(error, ToolchainError):
        if error.code == ErrorCode.IDF_VALIDATION_FAILED:
            return "Reinstall ESP-IDF: espcli install"
        return "Install ESP-IDF first: espcli install"

    if isinstance(error, ProjectError):
        return "Run inside an ESP-IDF project or create one: espcli init"

    if isinstance(error, BuildError):
        if "memory" in str(error).lower():
            return "Reduce code size or adjust partition table"
        return "Check source code and configuration"

    # FlashError and MonitorError before the generic HardwareError
    if isinstance(error, FlashError):
        return "Check device is in download mode, try lower baud rate"

    if isinstance(error, MonitorError):
        return "Check port is not in use, verify baud rate"

    if isinstance(error, HardwareError):
        return "Check USB connection and device power"

    if isinstance(error, CleanError):
        return "Try a full clean: espcli clean --full"

    if isinstance(error, OperationTimeoutError):
        return "Retry, the external tool did not answer in time"

    if isinstance(error, ConfigurationError):
        return "Check file permissions of the configuration file"

    return None
