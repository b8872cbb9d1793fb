"""Test that the project setup is working correctly."""

import copytrade_harvester


def test_version() -> None:
    """Test that version is defined."""
    assert copytrade_harvester.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from copytrade_harvester import domain
    from copytrade_harvester import harvester
    from copytrade_harvester import ingestor
    from copytrade_harvester import storage

    # Just verify imports work
    assert domain is not None
    assert harvester is not None
    assert ingestor is not None
    assert storage is not None
