"""
Alerting for operations that end in failed_terminal or blocked.
"""
