"""
                Table Ordering System

Backend for table-side restaurant ordering: guests order from their table,
the kitchen advances each order, the caisse takes payment, and every screen
stays in sync through row-change notifications.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
