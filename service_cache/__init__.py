"""
Judicial cache service package.

Consumed by server-side request handlers (judge/court profiles, search,
analytics) that supply a compute callback and receive cached-or-fresh data.
"""
