"""Forum domain on top of the cache layer.

Records, mutations and live views of the group-based coding forum the
library was built for.
"""
