"""External registry clients."""

from spendpipe.registries.http import RateLimitedJsonClient, RegistryError, RegistryRateLimitedError

__all__ = [
    "RateLimitedJsonClient",
    "RegistryError",
    "RegistryRateLimitedError",
]
