from __future__ import annotations


class BuildError(Exception):
    """
    Base class for every failure the build pipeline reports.

    The message doubles as a machine readable code (e.g. ``invalid_protocol``)
    so callers can branch on it without parsing prose.
    """

    def __init__(self, code: str, detail: str | None = None):
        self.code = code
        self.detail = detail
        super().__init__(code)

    def __str__(self):
        if self.detail:
            return f"{self.code}: {self.detail}"
        return self.code


class ValidationError(BuildError, ValueError):
    """The request is malformed or asks for something unsupported."""


class DownloadError(BuildError):
    """A remote PTAU or proving key could not be fetched."""


class InvalidZkeyError(BuildError):
    """A caller supplied proving key failed verification against the circuit."""


class ConstraintSizeError(BuildError):
    """The circuit does not fit in the selected or largest PTAU."""


class PtauSizeError(BuildError, ValueError):
    """No canonical PTAU exists for the requested size."""


class ToolchainError(BuildError, RuntimeError):
    """An external compiler or snarkjs invocation failed."""

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(code, detail)
        self.stdout = stdout
        self.stderr = stderr
