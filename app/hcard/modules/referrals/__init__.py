"""
Referrals module: review outcomes across the legacy and current stores.

Only ``reconciliation`` reads both tables.
"""
