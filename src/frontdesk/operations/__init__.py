"""
Operation store: durable record of every retryable unit of work.
"""
