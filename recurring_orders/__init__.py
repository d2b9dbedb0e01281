"""
Recurring order scheduling and lifecycle engine.

Turns one-time purchases into repeating delivery schedules, resolves the next
delivery day from declarative recurrence rules and keeps order totals and
catalog stock consistent across edits, cancellations and bulk schedule
changes.
"""

__version__ = "1.0.0"
