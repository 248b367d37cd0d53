"""Length-prefixed TCP protocol, service, client and node configuration."""

__all__ = ["client", "config", "protocol", "server"]