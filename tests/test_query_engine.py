from __future__ import annotations

import argparse
import importlib.util
import logging
import sys
import types
from pathlib import Path

import numpy as np
import pytest

from meshquery import EngineConfig, QueryEngine, load_config_from_dict, load_dataset_from_dict, setup_logging
from meshquery.codec import packb, unpackb
from meshquery.comm import MPIGroup, SerialGroup
from meshquery.config import add_engine_arguments
from meshquery.errors import MissingDataError
from meshquery.snapshot import load_snapshot, pack_dataset, unpack_dataset, write_snapshot

REPO_ROOT = Path(__file__).resolve().parents[1]


def _dataset_payload() -> list[dict]:
    return [
        {
            "state": {"domain_id": 0, "cycle": 12},
            "coordsets": {"coords": {"type": "uniform", "dims": {"i": 4, "j": 3}, "spacing": {"dx": 0.5, "dy": 0.5}}},
            "topologies": {"mesh": {"type": "uniform", "coordset": "coords"}},
            "fields": {
                "rho": {"association": "vertex", "topology": "mesh", "values": np.arange(12, dtype=np.float64)},
                "vel": {
                    "association": "vertex",
                    "topology": "mesh",
                    "values": {"u": np.zeros(12), "v": np.ones(12)},
                },
            },
        },
        {
            "state": {"domain_id": 1},
            "coordsets": {
                "pts": {
                    "type": "explicit",
                    "values": {"x": np.array([0.0, 1.0, 0.0, 1.0]), "y": np.array([0.0, 0.0, 1.0, 1.0])},
                }
            },
            "topologies": {
                "mesh": {
                    "type": "unstructured",
                    "coordset": "pts",
                    "elements": {"shape": "quad", "connectivity": np.array([0, 1, 3, 2], dtype=np.int32)},
                }
            },
            "fields": {
                "rho": {"association": "vertex", "topology": "mesh", "values": np.array([20.0, -4.0, 6.0, np.nan])},
            },
        },
    ]


def _engine(**config) -> QueryEngine:
    return QueryEngine(load_dataset_from_dict(_dataset_payload()), config=EngineConfig(**config))


def test_engine_statistics() -> None:
    engine = _engine()

    summed = engine.sum("rho")
    assert (summed.value, summed.count) == (66.0 + 22.0, 15)
    assert engine.avg("rho").value == pytest.approx(88.0 / 15.0)

    lo = engine.min("rho")
    assert (lo.value, lo.domain_id) == (-4.0, 1)
    assert lo.position.tolist() == [1.0, 0.0, 0.0]

    hi = engine.max("rho")
    assert (hi.value, hi.domain_id) == (20.0, 1)
    assert hi.to_dict()["position"] == [0.0, 0.0, 0.0]

    assert engine.nan_count("rho").value == 1
    assert engine.inf_count("rho").value == 0


def test_engine_histogram_defaults() -> None:
    engine = _engine(histogram_bins=6)

    hist = engine.histogram("rho")
    assert (hist.min_val, hist.max_val, hist.num_bins) == (-4.0, 20.0, 6)
    assert hist.value.sum() == 15

    cdf = engine.cdf("rho")
    assert cdf.value[-1] == pytest.approx(1.0)
    assert engine.pdf(hist).value.sum() == pytest.approx(1.0)
    assert engine.entropy(hist).value > 0.0


def test_engine_histogram_of_constant_field() -> None:
    payload = _dataset_payload()[:1]
    payload[0]["fields"]["rho"]["values"] = np.full(12, 3.0)
    engine = QueryEngine(load_dataset_from_dict(payload))

    hist = engine.histogram("rho", num_bins=4)
    assert (hist.min_val, hist.max_val) == (3.0, 4.0)
    assert hist.value.tolist() == [12.0, 0.0, 0.0, 0.0]


def test_engine_quantile_uses_configured_interpolation() -> None:
    engine = _engine(quantile_interpolation="lower")
    cdf = engine.cdf("rho", num_bins=6)

    assert engine.quantile(cdf, 0.5).value == pytest.approx(4.0)
    assert engine.quantile(cdf, 0.5, interpolation="higher").value == pytest.approx(8.0)
    assert engine.quantile("rho", 0.5, num_bins=6).value == pytest.approx(4.0)


def test_engine_metadata_queries() -> None:
    engine = _engine(default_topology="mesh")

    assert engine.has_field("vel")
    assert not engine.has_topology("other")
    assert engine.field_assoc("rho") == "vertex"
    assert engine.field_type("rho") == "double"
    assert engine.field_topology("rho") == "mesh"
    assert engine.spatial_dims() == 2
    assert engine.coord_type() == "double"
    assert engine.topology_types() == {"points": 0, "uniform": 1, "rectilinear": 0, "structured": 0, "unstructured": 1}
    assert engine.is_scalar_field("rho")
    assert not engine.is_scalar_field("vel")
    assert engine.get_state_var("cycle") == 12


def test_engine_sizes_and_locations() -> None:
    engine = _engine()

    assert engine.num_points() == 16
    assert engine.num_cells() == 7
    assert engine.num_points(domain=0) == 12
    assert engine.num_cells("mesh", domain=1) == 1

    assert engine.vertex_location(5).tolist() == [0.5, 0.5, 0.0]
    assert engine.element_location(0, domain=1).tolist() == [0.5, 0.5, 0.0]
    assert engine.element_vertex_indices(0, domain=1).tolist() == [0, 1, 3, 2]
    with pytest.raises(IndexError, match="domain index 5"):
        engine.vertex_location(0, domain=5)


def test_engine_requires_topology_name() -> None:
    with pytest.raises(ValueError, match="topology name is required"):
        _engine().spatial_dims()


def test_evaluate_dispatches_by_name() -> None:
    engine = _engine()

    assert engine.evaluate("sum", "rho").count == 15
    assert engine.evaluate("has_field", field="rho")
    assert engine.evaluate("num_points", domain=0) == 12
    with pytest.raises(ValueError, match="unknown query 'median'"):
        engine.evaluate("median", "rho")


def test_config_from_dict() -> None:
    cfg = load_config_from_dict({"histogram_bins": "32", "default_topology": "mesh"})
    assert cfg.histogram_bins == 32
    assert cfg.default_topology == "mesh"
    assert cfg.quantile_interpolation == "linear"

    with pytest.raises(ValueError, match="unknown engine config keys: colour"):
        load_config_from_dict({"colour": "red"})
    with pytest.raises(ValueError, match="histogram_bins must be positive"):
        load_config_from_dict({"histogram_bins": 0})
    with pytest.raises(ValueError, match="interpolation 'cubic'"):
        EngineConfig(quantile_interpolation="cubic")


def test_config_from_parsed_args() -> None:
    parser = add_engine_arguments(argparse.ArgumentParser())

    cfg = EngineConfig.from_parsed_args(parser.parse_args(["--bins", "16", "--interpolation", "nearest", "--topology", "mesh"]))
    assert (cfg.histogram_bins, cfg.quantile_interpolation, cfg.default_topology, cfg.use_mpi) == (16, "nearest", "mesh", False)

    assert EngineConfig.from_parsed_args(parser.parse_args([])) == EngineConfig()


def test_codec_round_trips_arrays() -> None:
    out = unpackb(packb({"a": np.arange(6, dtype=np.float32).reshape(2, 3), "n": np.int64(4), "s": "x"}))
    assert out["a"].dtype == np.float32
    assert out["a"].shape == (2, 3)
    assert out["a"][1, 2] == 5.0
    assert out["n"] == 4 and out["s"] == "x"
    with pytest.raises(TypeError, match="cannot pack"):
        packb({"bad": object()})


def test_snapshot_round_trip(tmp_path: Path) -> None:
    ds = load_dataset_from_dict(_dataset_payload())
    path = tmp_path / "ds.msgpack"
    write_snapshot(path, ds)

    loaded = load_snapshot(path)
    assert len(loaded) == 2
    assert loaded[0].coordsets["coords"].spacing[:2] == (0.5, 0.5)
    assert loaded[0].fields["vel"].values["v"].tolist() == [1.0] * 12
    assert loaded[1].topologies["mesh"].connectivity.tolist() == [0, 1, 3, 2]
    assert QueryEngine(loaded).sum("rho").count == 15


def test_snapshot_round_robin_partition() -> None:
    doms = [{"state": {"domain_id": n}} for n in range(5)]
    raw = pack_dataset(load_dataset_from_dict(doms))

    assert [d.domain_id for d in unpack_dataset(raw, rank=1, size=2)] == [1, 3]
    assert [d.domain_id for d in unpack_dataset(raw, rank=0, size=2)] == [0, 2, 4]
    with pytest.raises(ValueError, match="outside a group of size 2"):
        unpack_dataset(raw, rank=2, size=2)
    with pytest.raises(ValueError, match="not a meshquery snapshot"):
        unpack_dataset(packb({"domains": []}))


class _FakeComm:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def Get_rank(self) -> int:
        return 0

    def Get_size(self) -> int:
        return 1

    def allgather(self, value):
        self.calls.append("allgather")
        return [value]

    def allreduce(self, value, op=None):
        self.calls.append(f"allreduce:{op}")
        return value

    def Allreduce(self, send, recv, op=None):
        self.calls.append(f"Allreduce:{op}")
        recv[...] = send

    def bcast(self, value, root=0):
        self.calls.append(f"bcast:{root}")
        return value


def _fake_mpi4py(comm: _FakeComm) -> types.ModuleType:
    mod = types.ModuleType("mpi4py")
    mod.MPI = types.SimpleNamespace(COMM_WORLD=comm, SUM="SUM", MIN="MIN", MAX="MAX", LOR="LOR", LAND="LAND")
    return mod


def test_mpi_group_wraps_communicator(monkeypatch: pytest.MonkeyPatch) -> None:
    comm = _FakeComm()
    monkeypatch.setitem(sys.modules, "mpi4py", _fake_mpi4py(comm))

    group = MPIGroup()
    assert (group.rank, group.size) == (0, 1)
    assert group.allreduce(3, "max") == 3
    assert group.allreduce(np.ones(3), "sum").tolist() == [1.0, 1.0, 1.0]
    assert group.broadcast({"pos": np.array([1.0, 2.0])}, 0)["pos"].tolist() == [1.0, 2.0]
    assert group.argmin(2.5) == (2.5, 0)
    assert comm.calls == ["allreduce:MAX", "Allreduce:SUM", "bcast:0", "allgather"]
    with pytest.raises(ValueError, match="unsupported reduce op 'prod'"):
        group.allreduce(1, "prod")


def test_mpi_group_requires_mpi4py(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "mpi4py", None)
    with pytest.raises(ImportError, match="'mpi' extra"):
        MPIGroup()


def test_engine_builds_mpi_group_from_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "mpi4py", _fake_mpi4py(_FakeComm()))
    engine = QueryEngine(load_dataset_from_dict(_dataset_payload()), config=EngineConfig(use_mpi=True))
    assert isinstance(engine.group, MPIGroup)
    assert isinstance(_engine().group, SerialGroup)


def test_setup_logging(tmp_path: Path) -> None:
    log_file = tmp_path / "mq.log"
    logger = setup_logging("debug", log_file=str(log_file))
    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        logging.getLogger("meshquery.stats").debug("hello from stats")
        for handler in logger.handlers:
            handler.flush()
        assert "hello from stats" in log_file.read_text()
        assert "meshquery logging configured at level DEBUG" in log_file.read_text()

        assert len(setup_logging(logging.INFO).handlers) == 1
        with pytest.raises(ValueError, match="unknown log level: loud"):
            setup_logging("loud")
    finally:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()


def _load_script(name: str):
    module_spec = importlib.util.spec_from_file_location(name, REPO_ROOT / "scripts" / f"{name}.py")
    module = importlib.util.module_from_spec(module_spec)
    assert module_spec.loader is not None
    module_spec.loader.exec_module(module)
    return module


def test_field_stats_script(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "ds.msgpack"
    write_snapshot(path, load_dataset_from_dict(_dataset_payload()))
    script = _load_script("field_stats")

    try:
        assert script.main([str(path), "rho", "--bins", "6", "--quantile", "0.5"]) == 0
        out = capsys.readouterr().out
        assert "Field 'rho': vertex double on topology 'mesh'" in out
        assert "count=15" in out
        assert "min=-4.000000e+00" in out
        assert "q0.5=" in out

        assert script.main([str(path), "missing"]) == 1
        assert "not defined on any domain" in capsys.readouterr().out
        assert script.main([str(tmp_path / "nope.msgpack"), "rho"]) == 1
    finally:
        logging.getLogger("meshquery").handlers.clear()


def _inf_payload() -> dict:
    return {
        "state": {"domain_id": 0},
        "coordsets": {"coords": {"type": "uniform", "dims": {"i": 3, "j": 3}}},
        "topologies": {"mesh": {"type": "uniform", "coordset": "coords"}},
        "fields": {
            "f": {
                "association": "vertex",
                "topology": "mesh",
                "values": np.array([1.0, 2.0, np.inf, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0]),
            }
        },
    }


def test_engine_histogram_bounds_skip_inf() -> None:
    engine = QueryEngine(load_dataset_from_dict(_inf_payload()), config=EngineConfig(histogram_bins=7))
    assert engine.inf_count("f").value == 1

    hist = engine.histogram("f")
    assert (hist.min_val, hist.max_val) == (1.0, 8.0)
    # +inf is clamped into the last bin
    assert hist.value.sum() == 9
    assert hist.value[-1] == 3.0
    assert engine.quantile("f", 0.0).value == pytest.approx(1.0)

    assert engine.histogram("f", max_val=4.0).min_val == 1.0


def test_engine_histogram_without_finite_values() -> None:
    payload = _inf_payload()
    payload["fields"]["f"]["values"] = np.array([np.inf, -np.inf, np.nan] * 3)
    with pytest.raises(MissingDataError, match="no finite values"):
        QueryEngine(load_dataset_from_dict(payload)).histogram("f")


def test_field_stats_script_with_inf_values(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "inf.msgpack"
    write_snapshot(path, load_dataset_from_dict(_inf_payload()))
    script = _load_script("field_stats")

    try:
        assert script.main([str(path), "f", "--bins", "7"]) == 0
        out = capsys.readouterr().out
        assert "inf=1" in out
        assert "max=inf" in out
        assert "(7 bins)" in out
    finally:
        logging.getLogger("meshquery").handlers.clear()
