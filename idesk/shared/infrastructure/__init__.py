"""
Shared Infrastructure
=====================

Low-level technical concerns: structured JSON logging.
"""
