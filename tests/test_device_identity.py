from kioskwatch.services.device_identity import DeviceIdManager, generate_device_id

MACHINE_ID = "4c4c4544003957108052b4c04f384833"


def manager(store, hardware_id=MACHINE_ID, override=None):
    return DeviceIdManager(store, override=override, hardware_id_reader=lambda: hardware_id)


def test_first_run_uses_machine_id(store):
    assert manager(store).get_device_id() == MACHINE_ID
    assert store.get_setting("hardware_id_backup") == MACHINE_ID


def test_saved_id_reused_when_machine_id_unchanged(store):
    store.set_setting("device_id", "saved-id")
    store.set_setting("hardware_id_backup", MACHINE_ID)

    assert manager(store).get_device_id() == "saved-id"


def test_saved_id_kept_when_machine_id_changes(store):
    store.set_setting("device_id", "saved-id")
    store.set_setting("hardware_id_backup", MACHINE_ID)

    assert manager(store, hardware_id="ffffffffffffffffffffffffffffffff").get_device_id() == "saved-id"
    # backup is not rewritten
    assert store.get_setting("hardware_id_backup") == MACHINE_ID


def test_generated_when_no_machine_id(store):
    first = manager(store, hardware_id="").get_device_id()

    assert len(first) == 32
    assert manager(store, hardware_id="").get_device_id() == first


def test_placeholder_machine_id_is_ignored(store):
    device_id = manager(store, hardware_id="uninitialized").get_device_id()

    assert device_id != "uninitialized"
    assert len(device_id) == 32


def test_override_wins_and_is_not_persisted(store):
    assert manager(store, override="from-env").get_device_id() == "from-env"
    assert store.get_setting("device_id") is None


def test_reset_derives_again(store):
    store.set_setting("device_id", "saved-id")
    store.set_setting("hardware_id_backup", "old")
    ids = manager(store)

    ids.reset_device_id()

    assert store.get_setting("device_id") is None
    assert ids.get_device_id() == MACHINE_ID


def test_generated_ids_are_unique():
    assert generate_device_id() != generate_device_id()
