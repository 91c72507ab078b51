"""
Shared Kernel Module
====================

Generic infrastructure used across bounded contexts: structured logging
and the HTTP middleware stack.

DO NOT add SLA business logic to the shared kernel.
"""
