import pytest

import ldap_pubkey.config
import ldap_pubkey.ldap


class FakeLDAPObject:
    def __init__(self, directory, uri):
        self.directory = directory
        self.uri = uri
        self.options = {}
        self.binds = []
        self.searches = []
        self.unbound = False

    def set_option(self, option, value):
        self.options[option] = value

    def simple_bind_s(self, who, cred):
        self.binds.append((who, cred))
        if self.directory.bind_error:
            raise self.directory.bind_error

    def search_ext_s(self, base, scope, filterstr, attrlist, timeout=-1, sizelimit=0):
        self.searches.append(
            {
                "base": base,
                "scope": scope,
                "filter": filterstr,
                "attrlist": attrlist,
                "timeout": timeout,
                "sizelimit": sizelimit,
            }
        )
        if self.directory.search_error:
            raise self.directory.search_error
        return self.directory.result

    def unbind_ext_s(self):
        self.unbound = True


class FakeDirectory:
    def __init__(self):
        self.result = []
        self.bind_error = None
        self.search_error = None
        self.connections = []

    def initialize(self, uri):
        conn = FakeLDAPObject(self, uri)
        self.connections.append(conn)
        return conn

    def add_user(self, uid, keys):
        attrs = {}
        if keys is not None:
            attrs["sshPublicKey"] = [key.encode() for key in keys]
        self.result.append((f"uid={uid},ou=People,dc=example,dc=org", attrs))

    @property
    def conn(self):
        assert len(self.connections) == 1
        return self.connections[0]


@pytest.fixture(autouse=True)
def no_system_config(monkeypatch):
    monkeypatch.setattr(ldap_pubkey.config, "DEFAULT_CONFIG_FILES", [])


@pytest.fixture
def directory(monkeypatch):
    fake = FakeDirectory()
    monkeypatch.setattr(ldap_pubkey.ldap.ldap, "initialize", fake.initialize)
    return fake
