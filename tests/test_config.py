from __future__ import annotations

import dataclasses
import json
import logging

import pytest

from ppg_vitals.config import SAFE_BOUNDS, ConfigError, ConfigHolder, ProcessingConfig


class TestProcessingConfig:

    def test_defaults_are_valid(self):
        assert ProcessingConfig().validate() == []

    def test_every_field_has_safe_bounds(self):
        names = {f.name for f in dataclasses.fields(ProcessingConfig)}
        assert names == set(SAFE_BOUNDS)

    def test_defaults_inside_bounds(self):
        cfg = ProcessingConfig()
        for name, (low, high) in SAFE_BOUNDS.items():
            assert low <= getattr(cfg, name) <= high, name

    def test_frozen(self):
        cfg = ProcessingConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.red_dominance_ratio = 2.0  # type: ignore[misc]

    def test_replace_returns_validated_copy(self):
        cfg = ProcessingConfig()
        new = cfg.replace(peak_threshold_factor=0.7)
        assert new.peak_threshold_factor == 0.7
        assert cfg.peak_threshold_factor == 0.6

    def test_replace_rejects_out_of_bounds(self):
        with pytest.raises(ConfigError, match="red_dominance_ratio"):
            ProcessingConfig().replace(red_dominance_ratio=9.0)

    def test_replace_rejects_unknown_field(self):
        with pytest.raises(ConfigError, match="bogus"):
            ProcessingConfig().replace(bogus=1)

    def test_replace_rejects_non_finite(self):
        with pytest.raises(ConfigError):
            ProcessingConfig().replace(noise_reduction=float("nan"))

    def test_cross_field_constraint(self):
        errors = ProcessingConfig(min_peak_distance_ms=1000.0, max_peak_distance_ms=1000.0).validate()
        assert errors == [
            "max_peak_distance_ms (1000.0) must be between 1200.0 and 3000.0",
            "min_peak_distance_ms (1000.0) must be < max_peak_distance_ms (1000.0)",
        ]

    @pytest.mark.parametrize("name, value", [
        ("min_frames", 60.5),
        ("min_frames", 60.0),
        ("roi_half_size", 50.5),
    ])
    def test_integer_fields_reject_fractions(self, name, value):
        errors = ProcessingConfig(**{name: value}).validate()
        assert errors == [f"{name} ({value!r}) must be an integer"]
        with pytest.raises(ConfigError, match=name):
            ProcessingConfig().replace(**{name: value})

    def test_integer_fields_accept_ints(self):
        assert ProcessingConfig(min_frames=90, roi_half_size=30).validate() == []

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)

    def test_from_dict_ignores_unknown_keys(self, caplog):
        with caplog.at_level(logging.WARNING):
            cfg = ProcessingConfig.from_dict({"spo2_floor": 80, "colour": "red"})
        assert cfg.spo2_floor == 80
        assert "colour" in caplog.text

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"min_frames": 90, "noise_reduction": 1.5}))
        cfg = ProcessingConfig.from_file(path)
        assert cfg.min_frames == 90
        assert cfg.noise_reduction == 1.5

    def test_from_file_rejects_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            ProcessingConfig.from_file(path)


class TestConfigHolder:

    def test_update_publishes_new_instance(self):
        holder = ConfigHolder()
        before = holder.current
        after = holder.update(red_dominance_ratio=1.4)
        assert holder.current is after
        assert before.red_dominance_ratio == 1.2
        assert holder.version == 1

    def test_failed_update_keeps_current(self):
        holder = ConfigHolder()
        before = holder.current
        with pytest.raises(ConfigError):
            holder.update(red_dominance_ratio=1.4, min_valid_pixel_ratio=5.0)
        assert holder.current is before
        assert holder.version == 0

    def test_noop_update_keeps_version(self):
        holder = ConfigHolder()
        holder.update(red_dominance_ratio=1.2)
        assert holder.version == 0

    def test_rejects_invalid_initial_config(self):
        with pytest.raises(ConfigError):
            ConfigHolder(ProcessingConfig(red_dominance_ratio=5.0))

    def test_set_validates(self):
        holder = ConfigHolder()
        with pytest.raises(ConfigError):
            holder.set(ProcessingConfig(spo2_floor=50.0))
        holder.set(ProcessingConfig(spo2_floor=80.0))
        assert holder.current.spo2_floor == 80.0
        assert holder.version == 1
