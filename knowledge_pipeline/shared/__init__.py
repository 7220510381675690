"""
Shared Kernel
=============

Code used by every bounded context: API middleware and schemas, logging,
metrics and rate limiting.
"""
