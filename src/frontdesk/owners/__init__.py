"""
Owner (business) settings and the per-owner daily quota counter.
"""
