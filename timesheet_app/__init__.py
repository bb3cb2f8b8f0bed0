"""
Timesheet reconciliation application package.
"""
