"""
Hopper: chunk-oriented batch jobs fed from an inbound directory.

Jobs are ordered steps; each step streams records through read, process and
write stages in fixed-size chunks, and every committed chunk is checkpointed
so a failed or stopped run resumes where it left off.
"""

__version__ = "0.1.0"
