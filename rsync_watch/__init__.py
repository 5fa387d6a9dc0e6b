"""Rsync Watch: mirror directory trees to their destinations with rsync.

Watches each configured source folder for changes and re-runs rsync
once the changes settle, with optional desktop notifications.
"""

__version__ = "1.0.0"
__app_name__ = "Rsync Watch"
