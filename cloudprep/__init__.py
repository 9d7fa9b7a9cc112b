"""
Cloud preparation for cross-cluster gateway connectivity.
"""

__version__ = "0.1.0"
