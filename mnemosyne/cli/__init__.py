"""Command-line tools for mnemosyne.

- ``python -m mnemosyne.cli ingest`` -- ingest a directory of documents
- ``python -m mnemosyne.cli migrate`` -- copy the store to another backend
- ``python -m mnemosyne.cli stats`` / ``verify`` -- inspect a store

Heavy imports (embedding SDKs, database drivers) are deferred inside the
handlers so ``--help`` stays fast.
"""
