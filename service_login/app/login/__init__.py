"""
Login flow package.

Drives a login request from classification (client flow, new server flow,
continued server flow, completion sentinel) to exactly one response, while
keeping the reserved flow-state cookies reconciled on every path.
"""
