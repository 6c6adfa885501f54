"""
Login Service package for the Federated Login service.

This package exposes the FastAPI application that federates third-party
identity providers into a single service-issued token:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.login: Flow orchestration, flow-state cookies, CORS whitelist and
  popup completion pages.
- app.certs: Provider public-key caches (Google, AAD).
- app.validation: Provider JWT validation with refresh-once-on-key-miss.
- app.providers: One adapter per supported identity provider.
- app.tokens: Service token issuance.
- app.users: Identity store interface.

Design notes:
- Module import must not perform network calls. All IO happens in route
  handlers or explicit startup hooks.
- Flow state lives in client-held cookies; the only shared mutable state
  between requests is the certificate caches.
"""
