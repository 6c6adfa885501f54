"""
Token validation package.

Validates RS256 provider JWTs against a certificate cache, refreshing the
cache once and retrying when the token's key id is unknown.
"""
