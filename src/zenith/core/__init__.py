"""
Core modules for zenith.

This package contains the core business logic for:
- Configuration management
- The generation graph (data model, layout, transitions, store)
- The storage governor (cleanup consent protocol)
- Result fetching, image probing and export
- The flow session tying the graph and the blob cache together
"""
