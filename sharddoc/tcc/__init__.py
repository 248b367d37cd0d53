"""Try-Confirm-Cancel distributed transaction coordinator."""

__all__ = ["component", "models", "registry", "tcclog", "txmanager"]