"""Installation history — the git-backed revision store and change computation.

This package provides:
- GitStorage: ordered, durable revisions of an installation's metadata
- Change computation: artifact and channel diffs between two snapshots
- Comparators: pluggable per-file diffs sharing one checkout/cleanup path
"""
