"""auth/ -- Credentials, sessions and the authorization gate.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/, web/, or membership/.
api/, web/ and membership/ import from auth/, not the other way around.
"""
