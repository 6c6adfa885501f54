"""Federated Login service."""
