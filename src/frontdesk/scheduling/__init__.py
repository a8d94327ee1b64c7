"""
Schedulers that feed due operations to the dispatcher: periodic sweep and one-shot wakes.
"""
