"""
Provider-agnostic gateway reconciliation.
"""
