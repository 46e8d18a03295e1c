"""External adapters for the reporting client.

This package contains all external dependencies and provides
implementations of the core port interfaces.

Adapter Organization:

- transport/: REST client, retries, OAuth and proxy routing (httpx)
- output/: Sinks that surface the finished launch's id
"""
