"""
Calendar provider integrations and proactive OAuth token refresh.
"""
