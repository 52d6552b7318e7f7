"""
Thesis Flow
Blueprint registry.
"""
