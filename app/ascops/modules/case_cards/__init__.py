"""
Case Cards module.

Surgeon- and procedure-specific setup templates for surgical cases:
- Cards move DRAFT -> ACTIVE -> DEPRECATED, or to DELETED (tombstone)
- Only one ACTIVE card per facility + surgeon + procedure
- Content is versioned (MAJOR.MINOR.PATCH); every version is an immutable full snapshot
- An advisory 30-minute soft lock keeps other users from saving over an editor
- Every mutating action is written to the append-only edit log
"""
