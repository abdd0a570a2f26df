"""Tests for marshalling and the mobile code policy."""

import gzip
import pickle

import pytest

from pyitemserver._internal import rpc_serialization
from pyitemserver._internal.rpc_serialization import (
    MarshalledObject,
    accept_proxies,
    dumps,
    loads,
    loads_packed,
    proxies_accepted,
    reject_proxies,
    save_item,
)
from pyitemserver.errors import MobileCodeRejectedError

from .fixtures.items import PlainItem, UnmarshallableProxy

UNLOADED_GLOBAL = b"cno_such_mobile_module\nThing\n."


class TestMarshalledObject:
    def test_get_returns_fresh_copies(self):
        original = {"items": [1, 2, 3]}
        marshalled = MarshalledObject(original)

        first = marshalled.get()
        second = marshalled.get()

        assert first == original
        assert first is not original
        assert first is not second

    def test_is_a_snapshot(self):
        original = {"n": 1}
        marshalled = MarshalledObject(original)
        original["n"] = 2

        assert marshalled.get() == {"n": 1}

    def test_unmarshallable_value_fails_at_construction(self):
        with pytest.raises(Exception):
            MarshalledObject(UnmarshallableProxy())

    def test_survives_pickling(self):
        marshalled = MarshalledObject(PlainItem("inner"))

        copy = pickle.loads(pickle.dumps(marshalled))

        assert copy == marshalled
        assert copy.get().value() == "inner"

    def test_repr_names_type(self):
        assert "PlainItem" in repr(MarshalledObject(PlainItem()))


class TestMobileCodePolicy:
    def test_disabled_by_default(self):
        assert not proxies_accepted()

    def test_loaded_modules_are_allowed(self):
        assert loads(dumps(PlainItem("ok"))).value() == "ok"

    def test_unloaded_module_rejected(self):
        with pytest.raises(MobileCodeRejectedError):
            loads(UNLOADED_GLOBAL)

    def test_rejection_is_an_unpickling_error(self):
        assert issubclass(MobileCodeRejectedError, pickle.UnpicklingError)

    def test_accepting_allows_import_attempt(self):
        accept_proxies()

        assert proxies_accepted()
        with pytest.raises(ModuleNotFoundError):
            loads(UNLOADED_GLOBAL)

    def test_reject_restores_default(self):
        accept_proxies()
        reject_proxies()

        assert not proxies_accepted()
        assert rpc_serialization._accept_mobile_code is False


class TestPackedItems:
    def test_loads_packed_inflates_gzip(self):
        data = gzip.compress(dumps([1, 2]))

        assert loads_packed(data) == [1, 2]

    def test_loads_packed_accepts_plain(self):
        assert loads_packed(dumps([1, 2])) == [1, 2]

    def test_save_item_compresses_by_default(self, tmp_path):
        path = save_item(PlainItem(), tmp_path / "item.zmob")

        assert path.read_bytes()[:2] == rpc_serialization.GZIP_MAGIC

    def test_save_item_plain(self, tmp_path):
        path = save_item(PlainItem(), str(tmp_path / "item.mob"), compress=False)

        assert path.read_bytes()[:2] != rpc_serialization.GZIP_MAGIC
