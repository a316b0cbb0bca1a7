"""auth/ -- Accounts, passwords, session tokens and action tokens.

Layer rule: auth/ imports from core/ only, except auth/dependencies.py,
which adapts authz/ to FastAPI's Depends(). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
