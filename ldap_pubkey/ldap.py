import contextlib
import ipaddress
import ldap
from ldap import filter

from ldap_pubkey.common import KeyLookupError, LdapConnectionError, log_info

SSH_PUBLIC_KEY_ATTR = "sshPublicKey"

"""
Check whether host is a literal IPv4 or IPv6 address
"""


def is_addr(host):
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


"""
Certificates cannot be checked against a bare IP address, so verification
is turned off for those as well as when explicitly asked to skip it
"""


def skip_verify(env):
    return is_addr(env.host) or env.skip


def ldap_uri(env):
    host = f"[{env.host}]" if ":" in env.host else env.host
    scheme = "ldaps" if env.tls else "ldap"
    return f"{scheme}://{host}:{env.port}"


"""
Initialise LDAP connection and bind anonymously
"""


def init_ldap(ldapc, env):
    ldapc.set_option(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)
    ldapc.set_option(ldap.OPT_REFERRALS, 0)
    ldapc.set_option(ldap.OPT_DEREF, ldap.DEREF_NEVER)
    ldapc.set_option(ldap.OPT_SIZELIMIT, 0)
    ldapc.set_option(ldap.OPT_TIMELIMIT, 0)
    if env.timeout:
        ldapc.set_option(ldap.OPT_NETWORK_TIMEOUT, env.timeout)

    if env.tls:
        if skip_verify(env):
            ldapc.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
        else:
            ldapc.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
        # Must come after all other TLS options
        ldapc.set_option(ldap.OPT_X_TLS_NEWCTX, 0)

    ldapc.simple_bind_s("", "")


@contextlib.contextmanager
def ldap_session(env):
    """
    Yield an anonymously bound connection, unbinding on the way out whatever
    happens in between.
    """
    uri = ldap_uri(env)
    try:
        ldapc = ldap.initialize(uri)
    except ldap.LDAPError as e:
        raise LdapConnectionError(f"Failed connecting to {uri}: {e}") from e

    try:
        try:
            init_ldap(ldapc, env)
        except ldap.LDAPError as e:
            raise LdapConnectionError(f"Failed connecting to {uri}: {e}") from e
        yield ldapc
    finally:
        try:
            ldapc.unbind_ext_s()
        except ldap.LDAPError as e:
            log_info(f"Failed closing connection to {uri}: {e}")


"""
Search for a user's entry, only fetching the key attribute
"""


def search_user(ldapc, env):
    search_filter = env.filter % ldap.filter.escape_filter_chars(env.uid)
    try:
        result = ldapc.search_ext_s(
            env.base,
            ldap.SCOPE_SUBTREE,
            search_filter,
            [SSH_PUBLIC_KEY_ATTR],
            timeout=-1,
            sizelimit=0,
        )
    except ldap.LDAPError as e:
        raise LdapConnectionError(f"Failed searching {env.base} for {search_filter}: {e}") from e

    # Search continuation references come back with no DN
    return [entry for entry in result if entry[0] is not None]


"""
Extract stored public keys from search result, in server order
"""


def get_public_keys(entries):
    if len(entries) != 1:
        raise KeyLookupError("User does not exist or too many entries returned")

    values = []
    for name, attr_values in entries[0][1].items():
        if name.lower() == SSH_PUBLIC_KEY_ATTR.lower():
            values.extend(attr_values)
    if not any(values):
        raise KeyLookupError("User does not use ldapPublicKey")

    try:
        return [value.decode() if isinstance(value, bytes) else value for value in values]
    except UnicodeDecodeError as e:
        raise KeyLookupError(f"Stored public key is not valid UTF-8: {e}") from e


def lookup_public_keys(env):
    with ldap_session(env) as ldapc:
        entries = search_user(ldapc, env)
    return get_public_keys(entries)
