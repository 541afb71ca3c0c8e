import sys
from pathlib import Path


SRC = Path(__file__).resolve().parent.parent / "src"


def pytest_configure():
    # `common`, `state` and `workspace_state` live as top-level packages under src/
    if str(SRC) not in sys.path:
        sys.path.insert(0, str(SRC))
