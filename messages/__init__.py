"""
messages/ -- Private messages between two users.

Layer rule: may import from auth/ (user lookup, shared table metadata),
core/, and storage/. Never from api/.
"""
