"""
storage/ -- Object storage for message bodies (any S3-compatible endpoint).

Layer rule: no imports from api/, auth/, or messages/.
"""
