#!/usr/bin/python3
#
# AuthorizedKeysCommand for sshd: print a user's public keys stored in LDAP

import click
import sys

from click.core import ParameterSource

from ldap_pubkey.common import (
    ConfigError,
    KeyLookupError,
    LdapConnectionError,
    log_error,
    log_info,
)
from ldap_pubkey.config import load_env, resolve_env
from ldap_pubkey.ldap import lookup_public_keys


@click.command("ssh-ldap-pubkey")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    help="Config file (YAML or nslcd.conf format)",
)
@click.option("--host", help="LDAP server host")
@click.option("--port", type=click.IntRange(1, 65535), help="LDAP server port")
@click.option("--base", help="search base")
@click.option("--filter", "search_filter", help="search filter, %s is replaced by the username")
@click.option("--tls/--no-tls", default=None, help="LDAP connect over TLS")
@click.option("--skip/--no-skip", default=None, help="Insecure skip verify")
@click.argument("username", nargs=-1)
def ssh_ldap_pubkey(config_file, host, port, base, search_filter, tls, skip, username):
    ctx = click.get_current_context()
    # Only flags given on the command line override the config file
    if ctx.get_parameter_source("tls") == ParameterSource.DEFAULT:
        tls = None
    if ctx.get_parameter_source("skip") == ParameterSource.DEFAULT:
        skip = None

    try:
        env = load_env(config_file)
    except ConfigError as e:
        log_error(str(e))
        sys.exit(1)

    env = resolve_env(
        env,
        username,
        host=host,
        port=port,
        base=base,
        search_filter=search_filter,
        tls=tls,
        skip=skip,
    )

    try:
        keys = lookup_public_keys(env)
    except (LdapConnectionError, KeyLookupError) as e:
        log_error(f"Failed looking up keys for {env.uid}: {e}")
        sys.exit(1)

    log_info(f"Returning {len(keys)} keys for {env.uid} from {env.host}")
    for key in keys:
        print(key)

    sys.stdout.flush()


if __name__ == "__main__":
    ssh_ldap_pubkey()
