"""Tests for the startup sequence and its entry point."""

import io

import pytest

from pyitemserver._internal import bootstrap
from pyitemserver._internal.bootstrap import Bootstrapper, main, parse_startup_args
from pyitemserver._internal.publisher import Publisher
from pyitemserver._internal.registry import Registry
from pyitemserver._internal.rpc_protocol import lookup_remote
from pyitemserver._internal.rpc_serialization import proxies_accepted
from pyitemserver.errors import AnnouncementError, ResolutionError

from .fixtures.items import PlainItem, RecordingItem, RecordingProxy


class FakeResolver:
    def __init__(self, items):
        self.items = items
        self.requests = []

    def resolve(self, descriptor=None):
        self.requests.append(descriptor)
        item = self.items[descriptor]
        if isinstance(item, Exception):
            raise ResolutionError(descriptor, item)
        return item


class FakeBroadcast:
    def __init__(self, error=None):
        self.announcements = []
        self.error = error

    def announce(self, handle, ttl):
        if self.error is not None:
            raise self.error
        self.announcements.append((handle, ttl))


LOOPBACK = {"internal_host": "127.0.0.1", "internal_port": 0}


class TestParseStartupArgs:
    def test_no_arguments(self):
        assert parse_startup_args([]) == {
            "primary": None,
            "external_host": None,
            "external_port": 0,
            "internal_host": None,
            "internal_port": 0,
            "proxy": None,
        }

    def test_all_six_in_order(self):
        params = parse_startup_args(
            ["//server/item", "nat.example.com", "8000", "10.0.0.2", "1198", "//server/front"]
        )
        assert params == {
            "primary": "//server/item",
            "external_host": "nat.example.com",
            "external_port": 8000,
            "internal_host": "10.0.0.2",
            "internal_port": 1198,
            "proxy": "//server/front",
        }

    def test_bad_port_is_usage_error(self):
        with pytest.raises(SystemExit):
            parse_startup_args(["///main", "host", "not-a-port"])


class TestBootstrapper:
    def test_no_arguments_scenario(self):
        """Default descriptor is resolved, bound as 'main' and announced with ttl 16."""
        item = PlainItem("original")
        resolver = FakeResolver({"///main": item})
        channel = FakeBroadcast()
        out = io.StringIO()

        handle = Bootstrapper(resolver=resolver, broadcast=channel, out=out).run(dict(LOOPBACK))

        assert resolver.requests == ["///main"]
        assert handle.item is item
        assert channel.announcements == [(handle, 16)]
        # A peer querying the registry for "main" reaches the original item.
        ref = lookup_remote("127.0.0.1", handle.port, "main")
        assert ref.value() == "original"
        ref.close()

    def test_banner_reports_addressing_and_name(self):
        out = io.StringIO()
        params = dict(LOOPBACK, primary="tests.fixtures.items:PlainItem", external_host="nat.example.com",
                      external_port=8000)

        handle = Bootstrapper(broadcast=FakeBroadcast(), out=out).run(params)

        banner = out.getvalue().splitlines()
        assert banner[0].startswith("Server started: ")
        assert banner[1] == "Serving item tests.fixtures.items:PlainItem bound under name main"
        assert banner[2] == f"locally  operating on 127.0.0.1 port {Registry.get().address[1]}"
        assert banner[3] == "remotely operating on nat.example.com port 8000"
        assert (handle.host, handle.port) == ("nat.example.com", 8000)

    def test_banner_reports_existing_registry(self, loopback_config):
        earlier = Publisher(loopback_config).bind(PlainItem("earlier"), "earlier")
        out = io.StringIO()
        resolver = FakeResolver({"///main": PlainItem()})

        handle = Bootstrapper(resolver=resolver, broadcast=FakeBroadcast(), out=out).run(dict(LOOPBACK))

        banner = out.getvalue().splitlines()
        assert earlier.port != 0
        assert handle.port == earlier.port
        assert banner[2] == f"locally  operating on 127.0.0.1 port {earlier.port}"
        assert banner[3] == f"remotely operating on 127.0.0.1 port {earlier.port}"

    def test_proxy_descriptor_reaches_primary_before_publication(self):
        events = []
        primary = RecordingItem(events)
        proxy = RecordingProxy(label="front")
        resolver = FakeResolver({"///main": primary, "//server/front": proxy})

        def registry_factory(config):
            events.append(("registry", "ensure_created", None))
            return Registry.ensure_created(config)

        Bootstrapper(
            resolver=resolver, broadcast=FakeBroadcast(), registry_factory=registry_factory, out=io.StringIO()
        ).run(dict(LOOPBACK, proxy="//server/front"))

        assert events[0] == ("item", "set_item", proxy)
        assert events[1][:2] == ("registry", "ensure_created")
        assert primary.item is proxy

    def test_main_is_bound_without_proxy_argument(self):
        primary = RecordingItem()
        resolver = FakeResolver({"///main": primary, "front": RecordingProxy()})

        handle = Bootstrapper(resolver=resolver, broadcast=FakeBroadcast(), out=io.StringIO()).run(
            dict(LOOPBACK, proxy="front")
        )

        # With no bind-level proxy the item is handed its own reference.
        assert primary.proxy.get() == handle.ref()

    def test_proxy_ignored_for_item_without_set_item(self):
        resolver = FakeResolver({"///main": PlainItem(), "front": RecordingProxy()})

        handle = Bootstrapper(resolver=resolver, broadcast=FakeBroadcast(), out=io.StringIO()).run(
            dict(LOOPBACK, proxy="front")
        )

        assert resolver.requests == ["///main", "front"]
        assert Registry.get().lookup("main") is handle

    def test_set_item_failure_is_fatal(self):
        class Refusing(RecordingItem):
            def set_item(self, value):
                raise RuntimeError("no proxies here")

        resolver = FakeResolver({"///main": Refusing(), "front": RecordingProxy()})

        with pytest.raises(RuntimeError):
            Bootstrapper(resolver=resolver, broadcast=FakeBroadcast(), out=io.StringIO()).run(
                dict(LOOPBACK, proxy="front")
            )
        assert Registry.get() is None

    def test_resolution_failure_binds_nothing(self):
        resolver = FakeResolver({"///main": ConnectionRefusedError("nobody home")})
        channel = FakeBroadcast()

        with pytest.raises(ResolutionError):
            Bootstrapper(resolver=resolver, broadcast=channel, out=io.StringIO()).run(dict(LOOPBACK))

        assert Registry.get() is None
        assert channel.announcements == []

    def test_announcement_failure_is_fatal(self):
        resolver = FakeResolver({"///main": PlainItem()})
        channel = FakeBroadcast(error=AnnouncementError("no route"))

        with pytest.raises(AnnouncementError):
            Bootstrapper(resolver=resolver, broadcast=channel, out=io.StringIO()).run(dict(LOOPBACK))
        assert not proxies_accepted()

    def test_accepts_mobile_code_after_announcement(self):
        resolver = FakeResolver({"///main": PlainItem()})

        Bootstrapper(resolver=resolver, broadcast=FakeBroadcast(), out=io.StringIO()).run(dict(LOOPBACK))

        assert proxies_accepted()

    def test_mobile_code_can_stay_disabled(self):
        resolver = FakeResolver({"///main": PlainItem()})

        Bootstrapper(
            resolver=resolver, broadcast=FakeBroadcast(), accept_mobile_code=False, out=io.StringIO()
        ).run(dict(LOOPBACK))

        assert not proxies_accepted()


class TestMain:
    def test_failure_prints_trace_and_returns_one(self, monkeypatch, capsys):
        def failing_run(self, params):
            raise ResolutionError("///main", ConnectionRefusedError("nobody home"))

        monkeypatch.setattr(Bootstrapper, "run", failing_run)

        assert main([]) == 1
        err = capsys.readouterr().err
        assert "Traceback" in err
        assert "ResolutionError" in err

    def test_success_waits_then_shuts_down(self, monkeypatch):
        seen = {}

        def fake_run(self, params):
            seen["params"] = params
            seen["accept"] = self._accept_mobile_code
            return None

        monkeypatch.setattr(Bootstrapper, "run", fake_run)
        monkeypatch.delenv("ITEMSERVER_REJECT_PROXIES", raising=False)
        waited = []

        assert main(["tests.fixtures.items:PlainItem"], wait=lambda: waited.append(True)) == 0
        assert waited == [True]
        assert seen["params"]["primary"] == "tests.fixtures.items:PlainItem"
        assert seen["accept"] is True

    def test_reject_proxies_environment(self, monkeypatch):
        seen = {}
        monkeypatch.setattr(Bootstrapper, "run", lambda self, params: seen.setdefault("accept", self._accept_mobile_code))
        monkeypatch.setenv("ITEMSERVER_REJECT_PROXIES", "1")

        assert main([], wait=lambda: None) == 0
        assert seen["accept"] is False

    def test_interrupt_is_clean_exit(self, monkeypatch):
        monkeypatch.setattr(Bootstrapper, "run", lambda self, params: None)

        def interrupted():
            raise KeyboardInterrupt

        assert main([], wait=interrupted) == 0

    def test_real_sequence_serves_main(self, monkeypatch):
        monkeypatch.setattr(bootstrap, "Multicast", FakeBroadcast)
        monkeypatch.setattr(bootstrap.sys, "stdout", io.StringIO())
        ports = []

        def check_served():
            port = Registry.get().address[1]
            ports.append(port)
            ref = lookup_remote("127.0.0.1", port, "main")
            assert ref.value() == "plain"
            ref.close()

        assert main(["tests.fixtures.items:PlainItem", "", "0", "127.0.0.1", "0"], wait=check_served) == 0
        assert len(ports) == 1
        assert Registry.get() is None
