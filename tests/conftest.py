import sys
from pathlib import Path

import pytest

# Ensure the repo root is on sys.path so tests can import the local `src/` package.
ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _isolate_keys_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Never read or write the real ~/.pagecraft record from tests.
    monkeypatch.setenv("PAGECRAFT_KEYS_PATH", str(tmp_path / "api_keys.json"))
