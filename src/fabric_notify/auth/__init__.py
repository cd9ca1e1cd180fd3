"""Service principal authentication: scopes, tokens and the token cache.

Import the submodules directly (``fabric_notify.auth.tokens``); nothing is
re-exported here so that importing ``fabric_notify.auth.scopes`` does not
drag in the HTTP client.
"""
