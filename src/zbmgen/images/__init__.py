"""
Managed image directories.

This package contains:
- managed: Filename conventions, listing, placement and eviction
- retention: Versioned and current/backup retention policies
"""
