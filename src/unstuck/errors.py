"""Exception types raised by unstuck."""

from __future__ import annotations

from typing import Optional, Sequence


class UnstuckError(Exception):
    """Base class for all unstuck errors."""


class InvalidInputError(UnstuckError, ValueError):
    """A required input (diagnosis, plan, option) was missing or out of range."""


class UnsupportedTargetError(UnstuckError):
    """An action was requested against a target that cannot take it."""


class ResolutionError(UnstuckError):
    """A ResourceRef could not be resolved to a group/version/resource."""


class DeadlineExceeded(UnstuckError):
    """The overall operation timeout elapsed."""


class KubectlError(UnstuckError):
    """A kubectl invocation exited non-zero."""

    def __init__(
        self,
        message: str,
        args: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.kubectl_args = list(args or [])
        self.returncode = returncode
        self.stderr = stderr


class NotFoundError(KubectlError):
    """The requested object does not exist."""
