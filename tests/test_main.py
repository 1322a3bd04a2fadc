"""Tests for the app wiring in quarry.main."""

from unittest.mock import MagicMock

import pytest

from quarry.main import _LazyProxy


class TestLazyProxy:
    def test_resolves_after_startup(self):
        components: dict = {}
        proxy = _LazyProxy(components, "database")
        components["database"] = MagicMock(url="mysql+aiomysql://db")
        assert proxy.url == "mysql+aiomysql://db"

    def test_access_before_startup_fails(self):
        proxy = _LazyProxy({}, "loop")
        with pytest.raises(RuntimeError, match="loop"):
            proxy.run
