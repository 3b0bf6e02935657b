"""ORCHESTRA - external ticket aggregation for the ticket dashboard.

This package fans out to configured issue trackers (Jira, GitHub, GitLab,
Confluence), merges their results with local assignment data, and pages
through the combined stream with an opaque continuation token.
"""

__version__ = "1.0.0"
SCRIPT_NAME = "ORCHESTRA"

__all__ = [
    "__version__",
    "SCRIPT_NAME",
]
