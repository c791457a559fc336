import pytest

from completion.completion_store import CompletionStore


@pytest.fixture
def store(tmp_path):
    s = CompletionStore(str(tmp_path / "completion.db"))
    s.create_schema()
    try:
        yield s
    finally:
        s.close()
