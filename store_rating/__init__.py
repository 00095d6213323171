"""
Store Rating - Authentication & Authorization Service

Credential issuance, token verification, refresh-token lifecycle and
role-based access control for the store rating platform.
"""

__version__ = "0.1.0"
