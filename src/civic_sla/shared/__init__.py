"""
Shared Kernel Module
====================

Generic infrastructure used by the SLA bounded context and the HTTP
application shell (logging, middleware).

DO NOT add SLA business logic to the shared kernel.
"""
