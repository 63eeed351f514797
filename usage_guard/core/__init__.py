"""
Core modules for Usage Guard.

This package contains the token and OCR quota engines, the request-rate
limiter, limit-hit analytics and background cleanup.
"""
