"""
Tests for the encrypted local store and its key manager.
"""

import pytest

from drms_core.errors import LocalStoreCorruptionError, ValidationError


class TestCachedRecords:
    """Tests for cached record storage"""

    def test_put_and_get(self, local_store):
        """Records come back decrypted with their sync status"""
        local_store.put_record("entities", {"id": "e-1", "name": "Bakassi Camp"})

        record = local_store.get_record("entities", "e-1")

        assert record.data["name"] == "Bakassi Camp"
        assert record.sync_status == "SYNCED"

    def test_payload_encrypted_at_rest(self, local_store):
        """The raw row never contains the plaintext"""
        local_store.put_record("entities", {"id": "e-1", "name": "Bakassi Camp"})

        raw = local_store.query("SELECT payload FROM entities WHERE id = ?", ["e-1"])[0]["payload"]

        assert "Bakassi" not in raw

    def test_record_requires_id(self, local_store):
        """A record without an id cannot be cached"""
        with pytest.raises(ValidationError):
            local_store.put_record("entities", {"name": "No id"})

    def test_unknown_table_rejected(self, local_store):
        """Only the cache tables accept records"""
        with pytest.raises(ValidationError):
            local_store.put_record("users", {"id": "u-1"})

    def test_replace_keeps_pending_rows(self, local_store):
        """A refresh drops synced rows but keeps local edits awaiting sync"""
        local_store.put_record("entities", {"id": "old", "name": "Old"})
        local_store.put_record("entities", {"id": "local", "name": "Draft"}, "PENDING")

        local_store.put_records("entities", [{"id": "new", "name": "New"}], replace=True)

        ids = {r.id for r in local_store.list_records("entities")}
        assert ids == {"local", "new"}

    def test_set_sync_status(self, local_store):
        """Sync status can be retagged without touching the payload"""
        local_store.put_record("assessments", {"id": "a-1"}, "PENDING")

        assert local_store.set_sync_status("assessments", "a-1", "SYNCED")
        assert local_store.get_record("assessments", "a-1").sync_status == "SYNCED"

    def test_to_dataframe(self, local_store):
        """DataFrame rows carry payload fields plus syncStatus"""
        local_store.put_records("incidents", [{"id": "i-1", "type": "FLOOD"}, {"id": "i-2", "type": "FIRE"}])

        df = local_store.to_dataframe("incidents")

        assert len(df) == 2
        assert set(df["syncStatus"]) == {"SYNCED"}


class TestCorruption:
    """Tests for unreadable rows"""

    def test_corrupt_record_skipped_in_list(self, local_store):
        """One bad row does not break reading the rest"""
        local_store.put_record("entities", {"id": "good", "name": "Good"})
        local_store.put_record("entities", {"id": "bad", "name": "Bad"})
        local_store.execute("UPDATE entities SET payload = ? WHERE id = ?", ["A" * 64, "bad"])

        records = local_store.list_records("entities")

        assert [r.id for r in records] == ["good"]

    def test_corrupt_record_returns_none(self, local_store):
        """get_record treats an unreadable row as missing"""
        local_store.put_record("entities", {"id": "bad", "name": "Bad"})
        local_store.execute("UPDATE entities SET payload = ? WHERE id = ?", ["not base64!", "bad"])

        assert local_store.get_record("entities", "bad") is None

    def test_corrupt_queue_item_flagged_and_not_counted(self, local_store, queue):
        """An unreadable queue row is flagged, left out of the count and reported"""
        queue.add_to_queue("assessment", "create", "a-1", {"id": "a-1"})
        bad = queue.add_to_queue("assessment", "create", "a-2", {"id": "a-2"})
        local_store.execute("UPDATE sync_queue SET payload = ? WHERE id = ?", ["A" * 64, bad.id])

        assert queue.count() == 2
        assert [i.entity_id for i in queue.get_queue()] == ["a-1"]

        assert queue.count() == 1
        assert local_store.get_storage_info()["corrupt_queue_items"] == 1
        assert [i.entity_id for i in queue.get_ready_for_retry()] == ["a-1"]

    def test_decrypt_raises_corruption_error(self, local_store):
        """Tampered ciphertext fails authentication"""
        token, version = local_store.keys.encrypt("hello")
        tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

        with pytest.raises(LocalStoreCorruptionError):
            local_store.keys.decrypt(tampered, version)


class TestKeys:
    """Tests for key versioning and rotation"""

    def test_first_use_creates_key(self, local_store):
        """The first key is version 1"""
        assert local_store.keys.current_version == 1

    def test_rotation_keeps_old_records_readable(self, local_store):
        """Records sealed under an old key still decrypt after rotation"""
        local_store.put_record("entities", {"id": "e-1", "name": "Before"})

        assert local_store.keys.rotate() == 2
        local_store.put_record("entities", {"id": "e-2", "name": "After"})

        versions = {
            row["id"]: row["key_version"]
            for row in local_store.query("SELECT id, key_version FROM entities")
        }
        assert versions == {"e-1": 1, "e-2": 2}
        assert local_store.get_record("entities", "e-1").data["name"] == "Before"

    def test_rotation_prunes_old_keys(self, tmp_path):
        """Only the active key and the most recent retired ones are kept"""
        from drms_core.offline.local_store import LocalStore

        store = LocalStore(tmp_path / "prune.db", max_old_keys=1)
        store.initialize()
        store.keys.current_version
        for _ in range(3):
            store.keys.rotate()

        versions = [row["version"] for row in store.query("SELECT version FROM encryption_keys ORDER BY version")]
        assert versions == [3, 4]
        store.close()

    def test_reload_after_reset(self, local_store):
        """Key material is reloaded from the store after reset"""
        local_store.put_record("entities", {"id": "e-1", "name": "Persisted"})

        local_store.keys.reset()

        assert local_store.get_record("entities", "e-1").data["name"] == "Persisted"


class TestSettingsAndInfo:
    """Tests for app settings and storage info"""

    def test_setting_round_trip(self, local_store):
        """Settings are stored as JSON"""
        local_store.set_setting("bootstrap.role", "ASSESSOR")
        local_store.set_setting("offline.config", {"types": ["HEALTH"]})

        assert local_store.get_setting("bootstrap.role") == "ASSESSOR"
        assert local_store.get_setting("offline.config") == {"types": ["HEALTH"]}
        assert local_store.get_setting("missing", "fallback") == "fallback"

    def test_storage_info_sums_status_across_tables(self, local_store):
        """records_by_status adds up every cache table"""
        local_store.put_record("entities", {"id": "e-1"})
        local_store.put_record("assessments", {"id": "a-1"})
        local_store.put_record("responses", {"id": "r-1"}, "PENDING")

        info = local_store.get_storage_info()

        assert info["records_by_status"] == {"SYNCED": 2, "PENDING": 1}
        assert info["tables"]["entities"] == 1
        assert info["key_version"] == 1
