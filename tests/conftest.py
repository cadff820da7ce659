from pathlib import Path

import pytest

from tests.test_repo_common import PROVIDER_IDS, PROVIDERS


@pytest.fixture(params=PROVIDERS, ids=PROVIDER_IDS)
def repo(request, tmp_path: Path):
    """Fresh repository on every backend."""
    provider = request.param()
    repo = provider.create(tmp_path)
    yield repo
    provider.cleanup(repo)
