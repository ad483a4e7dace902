"""
Shared infrastructure: base models, error envelope, logging, request
context middleware and the DRF permission class.
"""
