from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


class IntegrationCallError(RuntimeError):
    """A provider answered, but not with something we can use."""

    def __init__(self, code: str, message: str = "", *, status: int | None = None):
        super().__init__(f"{code}:{message}" if message else code)
        self.code = code
        self.status = status
