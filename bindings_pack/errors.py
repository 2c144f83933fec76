"""Error taxonomy shared by the packaging pipelines."""

from __future__ import annotations

from typing import Optional, Sequence


class BuildError(RuntimeError):
    """Base class for failures that abort a target pipeline."""


class ConfigError(BuildError):
    """Raised when the build configuration cannot be loaded or validated."""


class StructuralMismatch(BuildError):
    """Raised when generated loader code does not have the expected shape."""


class PluginResolutionAmbiguity(BuildError):
    """Raised when more than one resolution plugin claims a specifier."""

    def __init__(self, specifier: str, plugins: Sequence[str]) -> None:
        self.specifier = specifier
        self.plugins = list(plugins)
        super().__init__(
            f"Specifier '{specifier}' is claimed by multiple plugins: {', '.join(self.plugins)}"
        )


class FileSystemFailure(BuildError):
    """Raised when a copy, move or delete cannot be completed."""

    def __init__(self, action: str, path: object, cause: Optional[BaseException] = None) -> None:
        self.action = action
        self.path = path
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to {action} {path}{detail}")


class ExternalProcessFailure(BuildError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        lines = [f"Command failed with exit code {returncode}: {' '.join(self.command)}"]
        if stdout.strip():
            lines.append(stdout.strip())
        if stderr.strip():
            lines.append(stderr.strip())
        super().__init__("\n".join(lines))


class BundlerFailure(ExternalProcessFailure):
    """Raised when the bundler rejects a build or transform."""
