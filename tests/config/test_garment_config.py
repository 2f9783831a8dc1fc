"""Loading, validating and bridging the YAML configuration."""

from pathlib import Path

import pytest
import yaml

from garment_config import DEFAULT_CONFIG_PATH, GarmentConfig, get_active_config
from garment_config.bridges import (
    build_wash_mappings,
    build_workflow_policy,
    init_database,
)
from garment_config.loader import compute_checksum, load_yaml_file, parse_config
from garment_kernel.db.engine import reset_engine
from garment_kernel.domain.sku import DEFAULT_WASH_MAPPINGS


def _write(tmp_path: Path, document: dict) -> Path:
    path = tmp_path / "garment.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


class TestDefaults:

    def test_packaged_defaults_load(self):
        config = get_active_config()

        assert isinstance(config, GarmentConfig)
        assert config.source == str(DEFAULT_CONFIG_PATH)
        assert config.workflow.post_wash_location == "POST_WASH_STAGING"
        assert config.workflow.strict_quantity_reconciliation is True
        assert config.workflow.enforce_step_graphs is False
        assert {m.code for m in config.wash_mappings} == {"STA", "IND", "ONX", "JAG"}
        assert config.logging.level == "INFO"

    def test_empty_document_uses_schema_defaults(self):
        config = parse_config({})

        assert config == GarmentConfig(checksum=compute_checksum({}))

    def test_config_is_frozen(self):
        config = get_active_config()

        with pytest.raises(AttributeError):
            config.workflow.enforce_step_graphs = True


class TestChecksum:

    def test_same_document_same_checksum(self):
        first = get_active_config()
        second = get_active_config()

        assert first.checksum == second.checksum
        assert len(first.checksum) == 64

    def test_key_order_does_not_matter(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})

    def test_different_documents_differ(self):
        assert compute_checksum({"workflow": {}}) != compute_checksum({"logging": {}})

    def test_load_emits_trace_record(self, captured_logs):
        config = get_active_config()

        (trace,) = [r for r in captured_logs() if r["message"] == "GARMENT_CONFIG_TRACE"]
        assert trace["checksum"] == config.checksum
        assert trace["database_dialect"] == "sqlite"
        assert trace["wash_mapping_count"] == 4


class TestValidation:

    @pytest.mark.parametrize("document", [
        {"workflow": {"enforce_step_graphs": "yes"}},
        {"database": {"pool_size": True}},
        {"database": {"pool_size": 0}},
        {"workflow": {"post_wash_location": "  "}},
        {"logging": {"level": "LOUD"}},
        {"wash_mappings": {"STA": {"base": "RAW", "shade": "medium"}}},
        {"wash_mappings": {"STA": "RAW"}},
        {"workflow": ["enforce_step_graphs"]},
    ])
    def test_bad_values(self, document):
        with pytest.raises(ValueError):
            parse_config(document)

    @pytest.mark.parametrize("document", [
        {"workflows": {}},
        {"workflow": {"enforce_graphs": True}},
        {"wash_mappings": {"STA": {"base": "RAW", "shade": "light", "hue": 3}}},
    ])
    def test_unknown_keys(self, document):
        with pytest.raises(ValueError, match="Unknown keys"):
            parse_config(document)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError):
            load_yaml_file(path)

    def test_log_level_normalized(self):
        assert parse_config({"logging": {"level": "debug"}}).logging.level == "DEBUG"


class TestBridges:

    def test_policy_from_file(self, tmp_path):
        path = _write(tmp_path, {
            "workflow": {
                "post_wash_location": "DRYING-RACK",
                "strict_quantity_reconciliation": False,
                "enforce_step_graphs": True,
            },
        })

        policy = build_workflow_policy(get_active_config(path))

        assert policy.post_wash_location == "DRYING-RACK"
        assert policy.strict_quantity_reconciliation is False
        assert policy.enforce_step_graphs is True
        assert policy.wash_mappings == DEFAULT_WASH_MAPPINGS

    def test_custom_wash_table(self, tmp_path):
        path = _write(tmp_path, {
            "wash_mappings": {"SND": {"base": "RAW", "shade": "light"}},
        })

        mappings = build_wash_mappings(get_active_config(path))

        assert set(mappings) == {"SND"}
        assert mappings["SND"].base == "RAW"
        assert mappings["SND"].shade == "light"

    def test_init_database_with_override(self, tmp_path):
        config = get_active_config()

        engine = init_database(config, database_url=f"sqlite:///{tmp_path / 'bridge.db'}")
        try:
            assert engine.dialect.name == "sqlite"
            assert str(tmp_path / "bridge.db") in str(engine.url)
        finally:
            reset_engine()
