"""
Shared infrastructure

Utilities shared across the domain apps that are not tied to any single
bounded context (encrypted storage of channel credentials).
"""
