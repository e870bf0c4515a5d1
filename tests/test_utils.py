# tests/test_utils.py
"""
Tests for logging, configuration and timing helpers.
"""
import argparse
import hashlib
import json
import logging
import time

import pytest
from easydict import EasyDict

from printadvisor.config import easydict_to_dict, load_config, merge_config, pick
from printadvisor.general import Profiler, determine_device
from printadvisor.utils import (
    artifact_digest,
    disable_logging,
    enable_logging,
    get_logger,
    setup_logging,
)


class TestLogging:
    """Test package logger configuration."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        package_logger = logging.getLogger("printadvisor")
        handlers = list(package_logger.handlers)
        level, disabled, propagate = (
            package_logger.level,
            package_logger.disabled,
            package_logger.propagate,
        )
        yield
        package_logger.handlers[:] = handlers
        package_logger.setLevel(level)
        package_logger.disabled = disabled
        package_logger.propagate = propagate

    def test_get_logger_is_namespaced(self):
        assert get_logger("printadvisor.inference.session").name == (
            "printadvisor.inference.session"
        )

    def test_setup_logging_disabled_by_default(self):
        package_logger = setup_logging()
        assert package_logger.disabled

    def test_setup_logging_console(self):
        package_logger = setup_logging(enabled=True, log_level="DEBUG")

        assert package_logger.level == logging.DEBUG
        assert not package_logger.propagate
        assert len(package_logger.handlers) == 1

    def test_setup_logging_to_file(self, tmp_path):
        log_file = tmp_path / "advisor.log"
        package_logger = setup_logging(
            enabled=True, log_to_file=True, log_file_path=str(log_file), enable_console=False
        )
        get_logger("printadvisor.test").info("hello from the test")
        for handler in package_logger.handlers:
            handler.flush()
            handler.close()

        assert "hello from the test" in log_file.read_text()

    def test_disable_and_enable(self):
        disable_logging("printadvisor.inference.dispatcher")
        assert logging.getLogger("printadvisor.inference.dispatcher").disabled

        enable_logging("printadvisor.inference.dispatcher", level="WARNING")
        dispatcher_logger = logging.getLogger("printadvisor.inference.dispatcher")
        assert not dispatcher_logger.disabled
        assert dispatcher_logger.level == logging.WARNING


class TestArtifactDigest:
    def test_bytes_and_file_agree(self, tmp_path):
        payload = b"model-bytes" * 1000
        path = tmp_path / "model.onnx"
        path.write_bytes(payload)

        expected = hashlib.sha256(payload).hexdigest()
        assert artifact_digest(payload) == expected
        assert artifact_digest(path) == expected
        assert artifact_digest(str(path)) == expected


class TestConfig:
    """Test config loading and merging."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "advisor.yml"
        path.write_text("model: advisor.onnx\nmax_concurrency: 2\n")
        assert load_config(str(path)) == {"model": "advisor.onnx", "max_concurrency": 2}

    def test_load_json(self, tmp_path):
        path = tmp_path / "advisor.json"
        path.write_text(json.dumps({"timeout": 1.5}))
        assert load_config(str(path)) == {"timeout": 1.5}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_no_path(self):
        assert load_config(None) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yml"))

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "advisor.toml"
        path.write_text("")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_merge_prefers_cli(self):
        args = argparse.Namespace(config="x.yml", model="cli.onnx", timeout=None)
        merged = merge_config(args, {"model": "file.onnx", "timeout": 3.0})
        assert merged == {"model": "cli.onnx", "timeout": 3.0}

    def test_pick(self):
        assert pick(None, 0, 5) == 0
        assert pick(None, None) is None

    def test_easydict_to_dict(self):
        cfg = EasyDict({"contract": {"inputs": [{"name": "input"}]}})
        plain = easydict_to_dict(cfg)
        assert type(plain) is dict
        assert type(plain["contract"]) is dict


class TestProfiler:
    def test_context_manager(self):
        profiler = Profiler()
        with profiler:
            time.sleep(0.01)
        with profiler:
            pass

        assert profiler.count == 2
        assert profiler.elapsed_time >= 0.0
        assert profiler.accumulated_time >= 0.01
        assert profiler.get_avg_time_ms() == pytest.approx(
            profiler.accumulated_time / 2 * 1000
        )

    def test_decorator_and_reset(self):
        profiler = Profiler()

        @profiler
        def work():
            return 42

        assert work() == 42
        assert profiler.count == 1
        profiler.reset()
        assert profiler.count == 0
        assert profiler.get_avg_time_ms() == 0.0


def test_determine_device():
    assert determine_device("cpu") == "cpu"
    assert determine_device("auto") in ("cpu", "cuda")
