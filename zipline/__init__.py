"""Routing core for a stream function network: frames, metadata, routing, authentication, logging and a zipper server."""

__version__ = "0.1.0"