"""
Shared Kernel Module
====================

Generic infrastructure used by the workflow module and the HTTP host:
logging and API middleware.

DO NOT add workflow or SLA business rules to the shared kernel.
"""

__version__ = "1.0.0"
