"""
Identity provider adapters.

One adapter per supported provider (Google, Facebook, Twitter, Microsoft
Account, AAD). Adapters share no base class; each supplies the capabilities
described by ``providers.base.ProviderAdapter`` and is looked up by its
lower-case name in the registry built by ``providers.registry``.
"""
