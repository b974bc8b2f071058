"""Database layer for scopeguard."""
