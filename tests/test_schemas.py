"""Tests for configuration models and YAML loading."""

import pytest
from pydantic import ValidationError

from dd_export.utils.config import Settings
from dd_export.utils.errors import ConfigError
from dd_export.utils.schemas import AuthConfig, FilterSpec, Interval, MappingRule, load_export_config


class TestMappingRule:
    def test_yaml_aliases(self):
        rule = MappingRule.model_validate({"field": "user_id", "dd_field": "usr.id"})
        assert rule.output_field == "user_id"
        assert rule.source_path == "usr.id"
        assert rule.is_expansion is False

    def test_sentinel_selects_expansion(self):
        rule = MappingRule(output_field="sku", source_path="-", inner_field="items.sku")
        assert rule.is_expansion is True

    def test_expansion_requires_inner_field(self):
        with pytest.raises(ValidationError):
            MappingRule(output_field="sku", source_path="-")

    def test_max_items_only_for_expansion(self):
        with pytest.raises(ValidationError):
            MappingRule(output_field="id", source_path="usr.id", max_items=3)


class TestFilterSpec:
    def test_epoch_millis(self):
        spec = FilterSpec.model_validate({"query": "*", "from": 1000, "to": 2000})
        assert (spec.from_ms, spec.to_ms) == (1000, 2000)

    def test_iso_datetimes(self):
        spec = FilterSpec.model_validate({"from": "2023-11-14T22:13:20Z", "to": "2023-11-14T22:13:21+00:00"})
        assert spec.from_ms == 1_700_000_000_000
        assert spec.to_ms == 1_700_000_001_000

    def test_digit_strings(self):
        spec = FilterSpec.model_validate({"from": "1000", "to": "2000"})
        assert spec.to_ms == 2000

    def test_from_after_to_rejected(self):
        with pytest.raises(ValidationError):
            FilterSpec.model_validate({"from": 2000, "to": 1000})

    def test_narrowed_keeps_query(self):
        spec = FilterSpec(query="service:web", from_ms=0, to_ms=1000)
        narrowed = spec.narrowed(Interval(from_ms=100, to_ms=200))
        assert (narrowed.query, narrowed.from_ms, narrowed.to_ms) == ("service:web", 100, 200)
        assert spec.from_ms == 0


class TestLoadExportConfig:
    def test_loads_full_document(self, mapping_yaml):
        config = load_export_config(str(mapping_yaml))

        assert config.auth.site == "datadoghq.eu"
        assert config.auth.api_key == "api-key"
        assert config.filter.query == "service:checkout"
        assert config.filter.from_ms == 1_700_000_000_000
        assert config.filter.to_ms == 1_700_001_800_000
        assert [r.output_field for r in config.mapping] == ["user_id", "sku"]
        assert config.mapping[1].max_items == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_export_config(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("spec: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_export_config(str(path))

    def test_missing_spec_section(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("mapping: []\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_export_config(str(path))

    def test_validation_error_wrapped(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text("spec:\n  datadog_filter:\n    from: 20\n    to: 10\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_export_config(str(path))

    def test_credentials_not_in_repr(self, mapping_yaml):
        config = load_export_config(str(mapping_yaml))
        assert "api-key" not in repr(config.auth)


class TestSettingsAuth:
    def test_fills_missing_credentials(self):
        app_settings = Settings(DD_SITE="datadoghq.eu", DD_API_KEY="env-api", DD_APP_KEY="env-app")
        auth = app_settings.resolve_auth(AuthConfig(api_key="file-api"))

        assert auth.api_key == "file-api"
        assert auth.app_key == "env-app"
        assert auth.site == "datadoghq.eu"

    def test_explicit_site_wins(self):
        app_settings = Settings(DD_SITE="datadoghq.eu")
        auth = app_settings.resolve_auth(AuthConfig(site="us3.datadoghq.com"))
        assert auth.site == "us3.datadoghq.com"
