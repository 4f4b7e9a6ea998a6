"""
                        Services Module

Contains all business logic for table ordering. Store-backed services
take an injected document store: the in-memory store in development,
the SQL store with Redis fan-out in staging and production.

Services:
    - store: Document store port (in-memory and SQL implementations)
    - sessions: Dining session lifecycle
    - cart: Per-device cart before an order is placed
    - diner: Diner-side session view over device storage
    - billing: Bill totals and invoice contract
    - menu: Menu catalog
    - archive: Spreadsheet archive of cleared sessions
"""

from tableside.services.archive import SessionArchive
from tableside.services.cart import Cart

__all__ = ["Cart", "SessionArchive"]
