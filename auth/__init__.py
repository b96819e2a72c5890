"""auth/ -- Passkey authentication, sessions, and authorization for the forum.

Layer rule: auth/ imports stdlib, third-party libraries, core/, and cache/.
It does NOT import from api/, messages/, or storage/.
api/ imports from auth/, not the other way around.
"""
