"""Exceptions raised for caller-contract violations."""


class CreatorMetError(ValueError):
    """Base class for errors raised by creatormet."""


class MixedStudentError(CreatorMetError):
    """Session segmentation received messages from more than one student."""


class NegativeBaselineError(CreatorMetError):
    """A trend was requested against a negative previous value."""


class ConfigurationError(CreatorMetError):
    """Engine configuration could not be built from the given source."""
