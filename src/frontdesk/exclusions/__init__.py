"""
Per-owner do-not-call list.
"""
