"""Guard against Qt imports in core modules.

Run this script in CI or locally to ensure the batch, counting and storage
modules stay importable on a headless machine. Only ``gui_session.py`` may
talk to Qt.
"""

from __future__ import annotations

from pathlib import Path
import sys
from typing import List, Optional

ROOT = Path(__file__).resolve().parents[1]

CORE_MODULES = [
    "src/cristae_density/analysis.py",
    "src/cristae_density/artifacts.py",
    "src/cristae_density/batch.py",
    "src/cristae_density/config.py",
    "src/cristae_density/errors.py",
    "src/cristae_density/io.py",
    "src/cristae_density/jobs.py",
    "src/cristae_density/logger.py",
    "src/cristae_density/peaks.py",
    "src/cristae_density/regions.py",
    "src/cristae_density/render_mpl.py",
    "src/cristae_density/results.py",
    "src/cristae_density/segmentation.py",
    "src/cristae_density/session.py",
    "src/cristae_density/workflow.py",
]

FORBIDDEN = ("PyQt", "PySide", "QtCore", "QtWidgets")


def find_violations(root: Path = ROOT, modules: Optional[List[str]] = None) -> List[str]:
    bad = []
    for rel in modules or CORE_MODULES:
        path = root / rel
        if not path.exists():
            bad.append(f"{rel} is missing")
            continue
        text = path.read_text(encoding="utf-8", errors="ignore")
        for token in FORBIDDEN:
            if token in text:
                bad.append(f"{rel} contains '{token}'")
                break
    return bad


def main() -> int:
    bad = find_violations()
    if bad:
        sys.stderr.write("Qt import guard failed:\n")
        sys.stderr.write("\n".join(bad))
        sys.stderr.write("\n")
        return 2
    print("Qt import guard passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
