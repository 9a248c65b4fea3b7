"""repoflow: declared maintenance workflows across many git repositories.

A workflow file names operations (rename directories after their remote, normalise or convert
remote URLs, promote a default branch, write an audit report, distribute templated files) and
the order constraints between them. repoflow orders the operations (`repoflow.dag`), turns
them into tasks (`repoflow.translate`) and runs the tasks against every repository found under
the configured roots (`repoflow.runtime`), asking for confirmation before mutating anything
unless told otherwise (`repoflow.prompt`).

Key exports from this module
- `__version__`: the package version string. (`__all__` is intentionally limited to this.)

Important invariants
- Configuration errors (unknown dependency, cycle, unsupported operation) are raised before any
  repository is touched.
- A failure in one repository never stops the others.
- Operation order is deterministic: among ready operations, the one declared first runs first.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
