"""
Catalog resolution, versioning, diff and verified-download pipeline for
cores, system databases and platform releases.
"""

__version__ = "0.1.0"
