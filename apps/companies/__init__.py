"""
Companies application.

Tenants of the platform (companies) and their offices.
"""
