class SubmissionError(Exception):
    """A logical submission could not be completed."""


class SubmissionTimeout(SubmissionError):
    """The overall submission deadline elapsed before any attempt confirmed."""


class RpcError(SubmissionError):
    """The node answered a JSON-RPC call with an error object."""

    def __init__(self, method: str, code: int | None, message: str):
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class MpcError(Exception):
    """Delegated signing through the MPC service failed."""


class MpcUnavailable(MpcError):
    """The MPC service has no published key to sign with."""


class MpcProposalRejected(MpcError):
    """The MPC service refused or did not acknowledge a sign proposal."""


class MpcSignTimeout(MpcError):
    """No signature was produced before the polling deadline."""
