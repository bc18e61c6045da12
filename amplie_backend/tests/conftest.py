import sys
from pathlib import Path

import pytest


def _ensure_package_on_path() -> None:
    here = Path(__file__).resolve()
    root = here.parent.parent.parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_ensure_package_on_path()


@pytest.fixture
def anyio_backend():
    return "asyncio"
