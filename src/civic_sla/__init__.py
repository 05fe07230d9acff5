"""
Civic SLA
=========

SLA deadline computation and escalation monitoring for municipal issues.
"""

__version__ = "1.0.0"
