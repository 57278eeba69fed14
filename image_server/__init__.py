"""
Image asset server

- Serves `<prefix>/<Collection>/{f1}/{f2}/{filename}?type=<fmt>` from the collection's source tree
- Re-encodes to the requested format on first access and caches the derivative on disk
- Warms the cache per collection at startup (precache), recording per-file failures
- DELETE removes a cached derivative (bearer token required); sources are never deleted
"""
