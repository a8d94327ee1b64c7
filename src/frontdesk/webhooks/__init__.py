"""
Replay of incoming webhooks whose first processing failed.
"""
