"""Device identity and key-value store tests for dashrec."""

import json

from dashrec.core.identity import (
    DEVICE_ID_KEY,
    DeviceIdentity,
    DeviceMetadata,
    PlatformTag,
    derive_device_id,
)
from dashrec.core.storage import KeyValueStore


def test_derive_device_id_collapses_separators(metadata):
    assert derive_device_id(metadata) == "Acme_Corp_Model_1_android"


def test_derive_device_id_empty_tokens():
    meta = DeviceMetadata(manufacturer="", model="--", platform=PlatformTag.IOS)
    assert derive_device_id(meta) == "Unknown_Unknown_ios"


def test_resolve_is_stable_across_calls(store, metadata):
    calls = []

    def provider():
        calls.append(1)
        return metadata

    identity = DeviceIdentity(store, metadata_provider=provider)

    first = identity.resolve()
    second = identity.resolve()

    assert first == second == "Acme_Corp_Model_1_android"
    assert len(calls) == 1
    assert store.get(DEVICE_ID_KEY) == first


def test_resolve_survives_restart_with_changed_metadata(tmp_path, metadata):
    """A persisted id is reused even when the hardware description changes."""
    path = tmp_path / "state.json"
    original = DeviceIdentity(KeyValueStore(path), metadata_provider=lambda: metadata).resolve()

    changed = DeviceMetadata(manufacturer="Other", model="Phone X", platform=PlatformTag.IOS)
    restarted = DeviceIdentity(KeyValueStore(path), metadata_provider=lambda: changed)

    assert restarted.resolve() == original


def test_fallback_id_is_not_persisted(store):
    def broken():
        raise OSError("no device info")

    identity = DeviceIdentity(store, metadata_provider=broken, clock=lambda: 1700000000.5)

    device_id = identity.resolve()

    assert device_id.startswith("Fallback_")
    assert device_id.endswith("_1700000000500")
    assert identity.resolve() == device_id
    assert store.get(DEVICE_ID_KEY) is None


def test_remember_and_reset(store, metadata):
    identity = DeviceIdentity(store, metadata_provider=lambda: metadata)
    identity.remember("Registered_Id_ios")
    assert identity.resolve() == "Registered_Id_ios"

    identity.reset()
    assert store.get(DEVICE_ID_KEY) is None
    assert identity.resolve() == "Acme_Corp_Model_1_android"


def test_key_value_store_roundtrip(tmp_path):
    path = tmp_path / "nested" / "state.json"
    store = KeyValueStore(path)

    assert store.get("missing") is None
    store.set("a", "1")
    store.set("b", "2")
    assert store.get("a") == "1"
    assert json.loads(path.read_text()) == {"a": "1", "b": "2"}

    assert store.delete("a") is True
    assert store.delete("a") is False
    assert KeyValueStore(path).get("b") == "2"


def test_key_value_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{broken", encoding="utf-8")
    store = KeyValueStore(path)

    assert store.get("a") is None
    store.set("a", "1")
    assert store.get("a") == "1"
