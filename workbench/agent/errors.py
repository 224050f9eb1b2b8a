class DispatchError(Exception):
    """The chat request could not be completed on any channel."""

    retryable = True


class ChannelUnavailable(DispatchError):
    """A backend channel cannot be used for this request (missing binary, failed handshake)."""


class DispatchTimeout(DispatchError):
    pass


class ProposalValidationError(ValueError):
    """A proposal's type or payload does not describe an executable action."""


class MutationError(Exception):
    """The data store rejected a mutation."""


class ToolingImportError(ValueError):
    """A skill or command import was rejected; the registry is unchanged."""
