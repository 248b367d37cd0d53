"""TCC transaction coordination and a framed TCP protocol for a replicated SQL store."""

__version__ = "0.1.0"
__all__ = ["example", "tcc", "tcp"]