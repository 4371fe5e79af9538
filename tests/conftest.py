import pytest

from gitlet import base


@pytest.fixture
def work_dir(tmp_path, monkeypatch):
    """Temporary working directory, also made the process cwd."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def repo(work_dir):
    """Freshly initialized repository handle, loaded in memory."""
    return base.init(str(work_dir))
