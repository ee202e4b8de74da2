"""
Core modules for the AI provider gateway.

This package contains the request/response contract, error taxonomy,
credential vault, security auditing and the gateway router.
"""
