"""
frontdesk: retry and scheduling core for the voice receptionist service.

NOTE:
This package __init__ MUST stay lightweight. Importing ORM models here
would trigger mapper configuration for every submodule import.
"""

__version__ = "0.1.0"

__all__: list[str] = ["__version__"]
