from __future__ import annotations


class SafeJsRunnerError(Exception):
    """Base class for engine errors.

    Example:
        ```python
        raise SafeJsRunnerError("engine failure")
        ```
    """

    code = "ENGINE_ERROR"


class DetectionError(SafeJsRunnerError):
    """Malformed or empty detection input. Never fatal.

    Example:
        ```python
        raise DetectionError("code must be a string")
        ```
    """

    code = "DETECTION_ERROR"


class TransformError(SafeJsRunnerError):
    """A transform backend failed for one language.

    Example:
        ```python
        raise TransformError("typescript", "Unexpected token")
        ```
    """

    code = "TRANSFORM_ERROR"

    def __init__(self, language: str, message: str) -> None:
        """Store the offending language alongside the message.

        Example:
            ```python
            err = TransformError("tsx", "Expected '>'")
            ```
        """
        super().__init__(f"[{language}] {message}")
        self.language = language
        self.message = message


class SandboxSpawnError(SafeJsRunnerError):
    """The sandbox runtime is unavailable or refused to spawn.

    Example:
        ```python
        raise SandboxSpawnError("node executable not found")
        ```
    """

    code = "SANDBOX_SPAWN_ERROR"


class ConcurrentExecutionError(SafeJsRunnerError):
    """An execution was requested while another one is in flight.

    Example:
        ```python
        raise ConcurrentExecutionError("An execution is already in progress")
        ```
    """

    code = "CONCURRENT_EXECUTION"


class ExecutionTimeoutError(SafeJsRunnerError):
    """Deadline marker. Reported through results, never raised to callers.

    Example:
        ```python
        err = ExecutionTimeoutError("Execution timed out after 100ms")
        ```
    """

    code = "EXECUTION_TIMEOUT"


class InstallError(SafeJsRunnerError):
    """A package could not be installed or removed.

    Example:
        ```python
        raise InstallError("Invalid npm package name: 'Bad Name'")
        ```
    """

    code = "INSTALL_ERROR"


class DependencyMissingWarning(UserWarning):
    """Third-party packages referenced by the code are not installed.

    Example:
        ```python
        warnings.warn("left-pad is not installed", DependencyMissingWarning)
        ```
    """
