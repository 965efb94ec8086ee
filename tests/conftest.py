import os
from pathlib import Path

import pytest

from udpxfer.config import Config


@pytest.fixture
def served_dir(tmp_path) -> Path:
    """Directory with a few files to serve."""
    root = tmp_path / "served"
    root.mkdir()
    (root / "small.txt").write_bytes(b"hello over udp\n")
    (root / "data.bin").write_bytes(os.urandom(2500))
    (root / "empty.bin").write_bytes(b"")
    (root / "sub").mkdir()
    (root / "sub" / "nested.bin").write_bytes(os.urandom(1234))
    (tmp_path / "secret.txt").write_bytes(b"not served")
    return root


@pytest.fixture
def output_dir(tmp_path) -> Path:
    out = tmp_path / "downloads"
    out.mkdir()
    return out


@pytest.fixture
def config(served_dir, output_dir) -> Config:
    """Loopback config with short timeouts so tests finish quickly."""
    return Config(
        host='127.0.0.1',
        port=0,
        root_dir=served_dir,
        output_dir=output_dir,
        base_timeout=0.2,
        max_retries=5,
    )
