"""pairgate - pair chat identities with an assistant gateway."""

__version__ = "0.1.0"
__logo__ = "🔗"
