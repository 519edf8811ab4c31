"""
Tests for snapshot files: schema validation, atomic saves, reload.
"""

import json

import pytest
import yaml

from conftest import ISSUER_A, ISSUER_B, OWNER


@pytest.fixture
def populated(registry):
    registry.add_trusted_issuer(OWNER, ISSUER_A, [1, 2])
    registry.add_trusted_issuer(OWNER, ISSUER_B, [7])
    return registry


class TestSchemaValidation:
    """Tests for validate_snapshot."""

    def test_snapshot_passes_schema(self, populated):
        from trustreg.persistence import validate_snapshot

        assert validate_snapshot(populated.snapshot()) == []

    @pytest.mark.parametrize("patch", [
        {"type": "Something"},
        {"version": "1"},
        {"extra": True},
        {"trusted_issuers": [{"issuer": ISSUER_A}]},
        {"trusted_issuers": [{"issuer": ISSUER_A, "claim_topics": [1, 1]}]},
        {"trusted_issuers": [{"issuer": ISSUER_A, "claim_topics": [True]}]},
        {"trusted_issuers": [{"issuer": "has space", "claim_topics": [1]}]},
    ])
    def test_schema_violations_reported(self, populated, patch):
        from trustreg.persistence import validate_snapshot

        data = populated.snapshot()
        data.update(patch)
        errors = validate_snapshot(data)
        assert errors
        assert all(e.startswith("$") for e in errors)


class TestSaveAndLoad:
    """Tests for save_snapshot and load_registry."""

    def test_json_round_trip(self, populated, tmp_path):
        """A saved JSON snapshot reloads to the same digest."""
        from trustreg.persistence import load_registry, save_snapshot

        path = save_snapshot(populated, tmp_path / "registry.json")
        restored = load_registry(path)

        assert restored.digest() == populated.digest()
        assert restored.get_trusted_issuers() == [ISSUER_A, ISSUER_B]

    def test_json_is_canonical(self, populated, tmp_path):
        """JSON snapshots are written as canonical bytes."""
        from trustreg.core import canonical_json_bytes
        from trustreg.persistence import save_snapshot

        path = save_snapshot(populated, tmp_path / "registry.json")
        assert path.read_bytes() == canonical_json_bytes(populated.snapshot()) + b"\n"

    @pytest.mark.parametrize("suffix", [".yaml", ".yml"])
    def test_yaml_round_trip(self, populated, tmp_path, suffix):
        """YAML snapshots are chosen by suffix and reload identically."""
        from trustreg.persistence import load_registry, save_snapshot

        path = save_snapshot(populated, tmp_path / f"registry{suffix}")
        assert yaml.safe_load(path.read_text())["owner"] == OWNER
        assert load_registry(path).digest() == populated.digest()

    def test_backup_written_on_overwrite(self, populated, tmp_path):
        """The previous snapshot is kept as <name>.backup."""
        from trustreg.persistence import save_snapshot

        path = tmp_path / "registry.json"
        save_snapshot(populated, path)
        first = path.read_bytes()

        populated.remove_trusted_issuer(OWNER, ISSUER_B)
        save_snapshot(populated, path)

        backup = tmp_path / "registry.json.backup"
        assert backup.read_bytes() == first
        assert path.read_bytes() != first

    def test_backup_can_be_disabled(self, populated, tmp_path):
        from trustreg.persistence import save_snapshot

        path = tmp_path / "registry.json"
        save_snapshot(populated, path, keep_backup=False)
        save_snapshot(populated, path, keep_backup=False)
        assert not (tmp_path / "registry.json.backup").exists()

    def test_no_temp_files_left(self, populated, tmp_path):
        from trustreg.persistence import save_snapshot

        save_snapshot(populated, tmp_path / "registry.json")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["registry.json"]

    def test_default_path_from_config(self, populated, tmp_path):
        """Without a path, storage.snapshot_path is used."""
        from trustreg.config import get_config_manager
        from trustreg.persistence import load_registry, save_snapshot

        target = tmp_path / "nested" / "configured.json"
        get_config_manager().set("storage.snapshot_path", str(target))

        assert save_snapshot(populated) == target
        assert load_registry().digest() == populated.digest()


class TestLoadFailures:
    """Unreadable or invalid snapshot files raise SnapshotError."""

    def test_missing_file(self, tmp_path):
        from trustreg.hardening import SnapshotError
        from trustreg.persistence import load_snapshot

        with pytest.raises(SnapshotError, match="not found"):
            load_snapshot(tmp_path / "absent.json")

    def test_unparsable_json(self, tmp_path):
        from trustreg.hardening import SnapshotError
        from trustreg.persistence import load_snapshot

        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(SnapshotError, match="Unreadable"):
            load_snapshot(path)

    def test_unparsable_yaml(self, tmp_path):
        from trustreg.hardening import SnapshotError
        from trustreg.persistence import load_snapshot

        path = tmp_path / "broken.yaml"
        path.write_text("owner: [unclosed")
        with pytest.raises(SnapshotError):
            load_snapshot(path)

    def test_schema_failure(self, tmp_path):
        from trustreg.hardening import SnapshotError
        from trustreg.persistence import load_snapshot

        path = tmp_path / "wrong.json"
        path.write_text(json.dumps({"type": "TrustedIssuersRegistry", "version": 1}))
        with pytest.raises(SnapshotError, match="schema"):
            load_snapshot(path)

    def test_invariant_failure(self, tmp_path):
        """Schema-valid snapshots still go through registry validation."""
        from trustreg.hardening import SnapshotError
        from trustreg.persistence import load_registry

        path = tmp_path / "dupes.json"
        path.write_text(json.dumps({
            "type": "TrustedIssuersRegistry",
            "version": 1,
            "owner": OWNER,
            "trusted_issuers": [
                {"issuer": ISSUER_A, "claim_topics": [1]},
                {"issuer": ISSUER_A, "claim_topics": [2]},
            ],
        }))
        with pytest.raises(SnapshotError, match="Duplicate"):
            load_registry(path)
