from typing import Optional


class RPCError(RuntimeError):
    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class TransientRPCError(RPCError):
    """Network, timeout or provider-side failure; worth retrying later."""


class MalformedQueryError(RPCError):
    """The node rejected the request itself; retrying will not help."""


class MalformedEventError(ValueError):
    pass


class CycleError(RuntimeError):
    pass
