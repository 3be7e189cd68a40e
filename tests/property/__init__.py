# tests/property/__init__.py
"""Property-based tests for hopper.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of. A batch runner that resumes
from checkpoints must count and commit the same way whatever the input,
chunk size or worker count.

Test categories:
- test_canonical_properties: Job key determinism, NaN rejection
- test_chunk_properties: Counter invariants, chunk-size and pool-size invariance
"""
