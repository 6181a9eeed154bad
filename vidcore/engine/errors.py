class CoreError(Exception):
    """Base for every failure the engine reports to its callers."""


class NotFound(CoreError):
    """Referenced video, user or danmu does not exist."""


class InvalidArgument(CoreError):
    """Negative time, bad paging, malformed keyword list, out-of-range id..."""


class MalformedCode(CoreError):
    """String is not a code IdCodec could have produced."""


class Conflict(CoreError):
    """Duplicate insert, usually a writer racing us on the same key."""


class Forbidden(CoreError):
    """Actor exists but policy doesn't allow the operation (not owner, not reviewer...)."""
