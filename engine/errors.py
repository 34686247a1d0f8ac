class MeshError(Exception):
    """Base class for errors raised by the mesh engine."""


class UnknownEntityError(MeshError, LookupError):
    """A unit or group referenced by id or name does not exist."""

    def __init__(self, kind: str, ref):
        super().__init__(f"Unknown {kind}: {ref!r}")
        self.kind = kind
        self.ref = ref


class InvalidRequestError(MeshError, ValueError):
    """An administrative request carries values the engine cannot apply."""


class ConfigurationConflictError(MeshError):
    """A mapping change would leave existing units referencing missing names."""


class StaleStateError(MeshError):
    """A state replace was attempted against a version that is no longer current."""


class AdvisoryUnavailableError(MeshError):
    """The advisory service is not configured or did not answer."""
