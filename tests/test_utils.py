"""Tests for block scheduling and atomic writes."""

import json

import numpy as np
import pandas as pd
import pytest

from coexnet.utils.blocks import block_bounds, default_block_size, resolve_block_size, run_blocks
from coexnet.utils.fileio import atomic_write_frame, atomic_write_json, atomic_write_text


class TestBlocks:
    """Block sizes and execution."""

    def test_bounds_cover_range(self):
        assert block_bounds(10, 4) == [(0, 4), (4, 8), (8, 10)]

    def test_default_block_size_respects_budget(self):
        assert default_block_size(1000, max_block_memory=8 * 1000 * 4 * 25) == 25
        assert default_block_size(10, max_block_memory=1) == 1
        assert default_block_size(10) == 10

    def test_resolve_block_size(self):
        assert resolve_block_size(5, 100) == 5
        with pytest.raises(ValueError):
            resolve_block_size(5, 0)

    @pytest.mark.parametrize("n_workers", [1, 3])
    def test_run_blocks_visits_every_block(self, n_workers):
        out = np.zeros(23)

        def work(start, stop):
            out[start:stop] = np.arange(start, stop)

        run_blocks(block_bounds(23, 5), work, n_workers=n_workers, progress=True)

        np.testing.assert_array_equal(out, np.arange(23))

    def test_worker_errors_propagate(self):
        def work(start, stop):
            if start == 5:
                raise RuntimeError("block failed")

        with pytest.raises(RuntimeError, match="block failed"):
            run_blocks(block_bounds(10, 5), work, n_workers=2)


class TestAtomicWrites:
    """Temp-file + rename writers."""

    def test_json_converts_numpy(self, tmp_path):
        path = tmp_path / "summary.json"

        atomic_write_json(path, {'n': np.int64(3), 'x': np.float32(0.5), 'v': np.arange(2)})

        assert json.loads(path.read_text()) == {'n': 3, 'x': 0.5, 'v': [0, 1]}

    def test_text_and_frame(self, tmp_path):
        atomic_write_text(tmp_path / "genes.txt", "g1\ng2\n")
        atomic_write_frame(tmp_path / "table.csv", pd.DataFrame({'a': [1, 2]}))

        assert (tmp_path / "genes.txt").read_text() == "g1\ng2\n"
        assert pd.read_csv(tmp_path / "table.csv")['a'].tolist() == [1, 2]

    def test_failed_write_leaves_no_file(self, tmp_path):
        path = tmp_path / "bad.json"

        with pytest.raises(TypeError):
            atomic_write_json(path, {'obj': object()})

        assert not path.exists()
        assert not list(tmp_path.glob("*.tmp"))
