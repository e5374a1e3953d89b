class MedaiNewsError(Exception):
    """Base class for pipeline errors."""


class FeedFetchError(MedaiNewsError):
    """Raised when an RSS/Atom feed cannot be fetched."""


class ParseError(MedaiNewsError):
    """Raised when a feed entry cannot be parsed into expected fields."""


class ProviderError(MedaiNewsError):
    """Raised when a text-generation provider fails or returns unusable output."""


class ConfigError(MedaiNewsError):
    """Raised for configuration that makes a run impossible (e.g. no feeds)."""


class StoreUnavailableError(MedaiNewsError):
    """Raised when the article store cannot be reached at all."""
