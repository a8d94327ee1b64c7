"""
AI call platform client and the outbound call queue.
"""
