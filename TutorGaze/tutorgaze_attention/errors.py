class AttentionError(Exception):
    """Base class for attention pipeline errors."""


class DetectorUnavailable(AttentionError):
    """The landmark source could not be acquired; the session was not started."""


class DescriptorLookupError(AttentionError, KeyError):
    """A state label has no descriptor. The label set is closed, so this is a bug."""


class SessionClosedError(AttentionError):
    pass


class SessionStateError(AttentionError):
    pass
