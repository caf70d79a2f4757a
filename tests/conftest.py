from __future__ import annotations

import sys
from pathlib import Path

# Ensure repo root and src/ are importable so tests can import `drivers.*` and the kernels
REPO_ROOT = Path(__file__).resolve().parents[1]
for p in (REPO_ROOT, REPO_ROOT / "src"):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))
