from __future__ import annotations

import os
import tempfile

# jobfinder.main builds a module-level app at import time; keep its database
# out of the developer's default location while tests run.
os.environ.setdefault(
    "JOBFINDER_DB_PATH",
    os.path.join(tempfile.mkdtemp(prefix="jobfinder-tests-"), "jobfinder.sqlite3"),
)
