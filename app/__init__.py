"""
                Restaurant Jobs & Realtime Core

Durable background jobs (notifications, stock deduction, scans, reports)
and room-scoped realtime events for restaurant floor and kitchen displays.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
