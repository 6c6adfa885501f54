"""
Provider certificate cache package.

Fetches and caches the public signing certificates that Google and AAD use
for their id_tokens. A forced refresh is honored at most once per
``min_refresh_interval_minutes`` so that clients presenting unknown key ids
cannot drive unbounded traffic to the provider key endpoints.
"""
