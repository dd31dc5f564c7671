"""
run-puppet — Scheduled puppet runner.

Clones the manifest repository, logs in to vault with an AppRole and runs
``puppet apply`` with the obtained token.
"""

__version__ = "0.1.0"

# Stamped by the release build; "unknown" for source checkouts
__commit__ = "unknown"
__build_date__ = "unknown"
__built_by__ = "unknown"
