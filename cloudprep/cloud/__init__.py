"""
Cloud provider adapters.
"""
