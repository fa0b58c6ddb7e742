# Copyright 2026. Tests for LockedStateManager.

import json
import threading
from dataclasses import dataclass, field

import pytest

from xcbolt.core.state import LockedStateManager


@dataclass
class Counter:
    n: int = 0
    tags: list[str] = field(default_factory=list)


def manager(path) -> LockedStateManager[Counter]:
    return LockedStateManager(
        path,
        lambda c: {"n": c.n, "tags": c.tags},
        lambda d: Counter(n=d["n"], tags=d.get("tags", [])),
        Counter,
    )


class TestLockedStateManager:
    def test_missing_loads_default(self, tmp_path):
        m = manager(tmp_path / "state.json")
        assert not m.exists()
        assert m.load() == Counter()

    def test_save_then_load(self, tmp_path):
        m = manager(tmp_path / "nested" / "state.json")
        m.save(Counter(n=3, tags=["a"]))
        assert m.exists()
        assert m.load() == Counter(n=3, tags=["a"])
        assert json.loads((tmp_path / "nested" / "state.json").read_text()) == \
            {"n": 3, "tags": ["a"]}

    def test_no_temp_files_left(self, tmp_path):
        m = manager(tmp_path / "state.json")
        m.save(Counter(n=1))
        assert not list(tmp_path.glob("*.tmp"))

    def test_failed_serialize_keeps_previous(self, tmp_path):
        path = tmp_path / "state.json"
        manager(path).save(Counter(n=1))
        bad = LockedStateManager(path, lambda c: {"n": object()}, lambda d: d, dict)
        with pytest.raises(TypeError):
            bad.save(Counter())
        assert json.loads(path.read_text()) == {"n": 1, "tags": []}
        assert not list(tmp_path.glob("*.tmp"))

    def test_concurrent_updates_are_serialized(self, tmp_path):
        m = manager(tmp_path / "state.json")

        def bump(c: Counter) -> None:
            c.n += 1

        threads = [threading.Thread(target=lambda: [m.update(bump) for _ in range(20)])
                   for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert m.load().n == 80
