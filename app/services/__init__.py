"""
                        Services Module

Business logic behind the HTTP and WebSocket surface.

Services:
    - currency: EUR <-> display currency conversion
    - lifecycle: order status state machine
    - orders: order creation, transitions, payment, archival
    - menu: menu, settings and PIN administration
    - projections: kitchen, caisse and guest views
    - changefeed: row-change notifications (in-memory or Redis)
    - live: re-fetching live views over the change feed
    - excel_manager: process-safe sales ledger
"""

from app.services.excel_manager import ExcelManager

__all__ = ["ExcelManager"]
