from __future__ import annotations

from typing import Optional


class AsyEvalError(Exception):
    """Base class for errors raised while serving a compile request.

    ``public_message`` is what the client sees; the exception text itself
    may carry filesystem paths and is only logged.
    """

    status_code = 500
    public_message: Optional[str] = None

    def detail(self) -> str:
        return self.public_message or str(self)


class InvalidFormat(AsyEvalError):
    status_code = 400


class InputTooLarge(AsyEvalError):
    status_code = 413
    public_message = "input too large"


class WorkspaceCreateError(AsyEvalError):
    public_message = "create user dir failed"


class InputWriteError(AsyEvalError):
    public_message = "cannot write to input file"


class ToolUnavailable(AsyEvalError):
    """An executable from the tool chain is not installed on this host."""

    public_message = "compiler unavailable"


class MalformedToken(ValueError):
    pass


class UsageCounterError(AsyEvalError):
    public_message = "usage counter unavailable"
