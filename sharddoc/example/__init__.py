"""Reference TCC component over a key-value client and an SQLite transaction log."""

__all__ = ["dao", "keys", "kvcomponent", "recordstore"]