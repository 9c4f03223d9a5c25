"""Smoke test: verify the detection_training package is importable."""

import detection_training


def test_package_version() -> None:
    """Package must declare a __version__ string."""
    assert isinstance(detection_training.__version__, str)
    assert detection_training.__version__ == "0.0.1"
