"""
Retry core: outcomes, backoff policies, eligibility gate, dispatcher, cancellation.
"""
