"""auth/ -- Authentication and authorization core for Tokenguard.

Passwords, token signing, the token ledger, user and role stores, the
AuthService use cases, and the per-request authorization guard.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
