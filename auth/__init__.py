"""auth/ -- Authentication and authorization package.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, web/, core/, or security/.
api/ and web/ import from auth/, not the other way around.
"""
