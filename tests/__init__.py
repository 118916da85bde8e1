"""
mbtiler test suite

Structure:
- unit/: projection, fetcher, store/writer, pipeline, config and CLI tests (no network)
- integration/: real downloads, run only with MBTILER_NETWORK_TESTS=1
"""
