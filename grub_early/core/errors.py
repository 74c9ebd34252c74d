from __future__ import annotations


class GrubEarlyError(RuntimeError):
    """Base class of every fatal build condition.

    Anything deriving from it aborts the whole build: an image missing a
    required module can leave the machine unbootable, so there is no
    degraded mode.
    """


class ConfigError(GrubEarlyError):
    pass


class MissingInputError(GrubEarlyError):
    pass


class ExternalToolError(GrubEarlyError):
    pass
