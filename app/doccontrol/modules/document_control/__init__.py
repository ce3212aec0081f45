"""
Document Control.

- Documents are numbered per type (FORM-00001) and versioned per lineage:
  prototypes vA..vZ, production v1..v999
- Draft -> In Approval -> Released -> Obsolete, with unanimous approval
- Releasing a version obsoletes the one it supersedes
- Meaningful actions are recorded to the append-only audit trail
"""
