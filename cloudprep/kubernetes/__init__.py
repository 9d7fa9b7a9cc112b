"""
Kubernetes collaborators: node labels and machine sets.
"""
