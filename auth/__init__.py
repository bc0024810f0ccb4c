"""auth/ -- Account authentication package for HubAuth.

Credential store, lockout policy, token issuer, TOTP verifier, CSRF checks,
session registry and the AuthService that composes them.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
auth/dependencies.py is the single FastAPI-aware module.
"""
