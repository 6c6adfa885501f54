"""Service token issuance."""
