# renovatr/errors.py


class ModelInvocationError(Exception):
    """The outbound generation call did not complete."""


class NetworkFailure(ModelInvocationError):
    pass


class InvocationTimeout(ModelInvocationError):
    pass


class ModelOutputError(Exception):
    """The call completed but its output is unusable."""


class SchemaViolation(ModelOutputError):
    pass


class EmptyModelOutput(ModelOutputError):
    pass


class DirectiveError(Exception):
    """Raised inside the directive pipeline only; always absorbed before it reaches a caller."""


class MalformedPayload(DirectiveError):
    pass


class UnknownField(DirectiveError):
    pass


class PersistenceError(Exception):
    """Fatal: the user's action did not complete."""


class EntityNotFound(PersistenceError):
    pass


class CycleInProgressError(Exception):
    pass


class CycleCancelled(Exception):
    pass
