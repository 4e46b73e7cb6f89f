"""
PetCare BFF
===========

Backend-for-frontend between the PetCare single-page UI and the upstream
PetCare API: server-side sessions, CSRF protection, request logging,
a JSON error envelope, and request forwarding to the upstream ``/api``
namespace.
"""

__version__ = "1.0.0"
