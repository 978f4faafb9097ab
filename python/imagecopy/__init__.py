"""
Image relocation engine for image-stream backup and restore.

Copies images hosted on a cluster-local registry into a migration registry
during backup, and from the migration registry into the destination
cluster's registry during restore, keeping tag and digest bookkeeping
consistent across all three.
"""

__version__ = "0.1.0"
