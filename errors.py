class ValidationError(ValueError):
    """Client-fixable input problem, raised before anything is written."""


class NotFoundError(ValueError):
    """Entity is missing or belongs to another owner.

    Both cases share one message so callers cannot probe for other owners' data.
    """


class ProviderError(RuntimeError):
    """The bank data provider failed, timed out, or rejected the credentials."""


class ConsistencyError(RuntimeError):
    """A row that was just written could not be read back."""
