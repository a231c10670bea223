from datetime import datetime, timezone
from types import SimpleNamespace

from clusterops.setting_controller import SERVER_VERSION_SETTING, SettingHandler


class CountingSyncer:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    def sync(self):
        self.calls += 1
        if self.error is not None:
            raise self.error


def setting(name=SERVER_VERSION_SETTING, deleted=False):
    stamp = datetime(2020, 1, 1, tzinfo=timezone.utc) if deleted else None
    return SimpleNamespace(name=name, deletion_timestamp=stamp)


def test_server_version_setting_triggers_sync():
    syncer = CountingSyncer()
    item = setting()
    assert SettingHandler(syncer).syncer_on_change("k", item) is item
    assert syncer.calls == 1


def test_other_setting_is_ignored():
    syncer = CountingSyncer()
    item = setting(name="ui-index")
    assert SettingHandler(syncer).syncer_on_change("k", item) is item
    assert syncer.calls == 0


def test_deleted_setting_is_ignored():
    syncer = CountingSyncer()
    SettingHandler(syncer).syncer_on_change("k", setting(deleted=True))
    assert syncer.calls == 0


def test_missing_setting_returns_none():
    syncer = CountingSyncer()
    assert SettingHandler(syncer).syncer_on_change("k", None) is None
    assert syncer.calls == 0


def test_sync_failure_is_swallowed():
    syncer = CountingSyncer(error=RuntimeError("boom"))
    item = setting()
    assert SettingHandler(syncer).syncer_on_change("k", item) is item
    assert syncer.calls == 1


def test_custom_setting_name():
    syncer = CountingSyncer()
    handler = SettingHandler(syncer, server_version_name="custom")
    handler.syncer_on_change("k", setting(name="custom"))
    handler.syncer_on_change("k", setting())
    assert syncer.calls == 1