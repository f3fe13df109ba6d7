"""Contracts package.

This package defines the *public* contracts of the hub: queue names, wire-envelope
metadata keys, and the shape of inbound webhook bodies. Adapters and publishers may
only share types via `hub.core` and `hub.contracts`.
"""
