"""Tracker clients: fetch release items from an issue tracker.

Only GitHub is implemented. Queries are independent and read-only, so
fetch_all runs them concurrently under a bounded pool.
"""

from renote.tracker.github import GitHubTracker, MockTracker, TrackerProtocol
from renote.tracker.pool import fetch_all

__all__ = ["GitHubTracker", "MockTracker", "TrackerProtocol", "fetch_all"]
