"""Bootstrap module for CLI path setup.

Puts the project root on sys.path before schoolday imports, so the CLI runs
from a checkout without an editable install.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))
