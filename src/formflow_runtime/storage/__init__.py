"""
Persistent storage adapters.
"""

from .postgres import PostgresEventStore, payload_hash

__all__ = ["PostgresEventStore", "payload_hash"]
