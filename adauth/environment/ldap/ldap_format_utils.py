# Created in August 2021
#
# Author: Azaria Zornberg
#
# Copyright 2021 - 2021 Azaria Zornberg
#
# This file is part of adauth
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

import collections.abc
import re
import six

from ldap3 import BASE, LEVEL, SUBTREE, Connection
from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn
from typing import List, Union

from adauth.environment.ldap.ldap_constants import SEARCH_SCOPE_ALIASES
from adauth.exceptions import InvalidLdapParameterException


# anything outside of this set gets escaped when placed into a filter
_FILTER_UNSAFE_CHARS = re.compile(r"[^ a-zA-Z0-9.&\-_\[\]`~|@$%^?:{}!']")
_ESCAPED_SPACE = '\\20'


def is_dn(anything: str) -> bool:
    """ Determine if a specified string is a distinguished name. """
    try:
        parse_dn(anything, escape=True)
        return True
    except LDAPInvalidDnError:
        return False


def construct_domain_from_ldap_base_dn(domain: str) -> str:
    """
    Given a base DN, constructs the DNS name of the AD domain.
    """
    dn_split = parse_dn(domain)
    # parse dn takes "cn=demo,ou=Computers,dc=example,DC=com" and turns it into
    # [('cn', 'demo', ','), ('ou', 'Computers', ','), ('dc', 'example', ','), ('DC', 'com', '')]
    domain_pieces = [piece[1] for piece in dn_split if piece[0].upper() == 'DC']
    return '.'.join(domain_pieces)


def convert_to_ldap_iterable(anything) -> List:
    """ Attributes come back from searches as single values or lists depending on whether the
    server schema was read and says they're single-valued. This converts values to a list so
    that callers don't need to care.
    """
    if anything is None:
        return []
    if isinstance(anything, dict):
        raise InvalidLdapParameterException('Dictionaries may not be specified as LDAP values.')
    # iterables that aren't strings are mostly fine, but we turn any sets or tuples into lists
    if isinstance(anything, collections.abc.Iterable) and not isinstance(anything, (six.string_types, bytes)):
        return list(anything)
    # otherwise make it a 1-item list
    return [anything]


def unpack_single_value(anything):
    """ The inverse of convert_to_ldap_iterable for values we know are single-valued, like primaryGroupID.
    Empty lists become None.
    """
    if isinstance(anything, (list, tuple)):
        if not anything:
            return None
        return anything[0]
    return anything


def escape_filter_string(anything: str) -> str:
    """ Escape a string so that it can be interpolated into an LDAP filter without changing the
    meaning of the filter.
    Everything outside of a conservative safe set is replaced with a backslash and the two digit
    hex value of each of its UTF-8 octets, as rfc4515 requires. This includes the characters
    that are special in distinguished names (, \\ # + < > ; " =) as well as the filter operators.

    Active Directory trims unescaped whitespace at the start and end of a value when matching,
    so a leading or trailing space is escaped as well. Spaces in the middle are left alone.
    """
    if anything.isalnum() and anything.isascii():
        return anything

    def escape_match(match):
        """ Escape a single character."""
        return ''.join('\\%02x' % octet for octet in match.group(0).encode('utf-8'))

    escaped = _FILTER_UNSAFE_CHARS.sub(escape_match, anything)
    if escaped.startswith(' '):
        escaped = _ESCAPED_SPACE + escaped[1:]
    if escaped.endswith(' '):
        escaped = escaped[:-1] + _ESCAPED_SPACE
    return escaped


def escape_dn_for_filter(anything: str) -> str:
    """Escape an LDAP distinguished name so that it can be used in filters without confusing the server.
    Distinguished names already have some special characters escaped or encoded, so we must use this
    function instead of the generic escape function, which would escape the existing escape sequences.

    In a filter, you use the format field=value.
    But distinguished names are in the form CN=x,OU=y,DC=z so those equal signs need to be escaped.
    But then the values x, y, and z can also have equal signs in them, and those will ALREADY be escaped
    differently from the ones following CN, OU, etc.
    That's why DNs need a different escaping in filters than everything else.
    """
    if anything.isalnum():
        return anything

    def escape_char(char):
        """ Escape a single character."""
        if char in "()*\0":
            return "\\%02x" % ord(char)
        else:
            return char
    return "".join(escape_char(x) for x in anything)


def replace_filter_placeholder(filter_template: str, placeholder: str, value: str) -> str:
    """ Substitute every occurrence of a placeholder in a filter template. Values are expected to
    already be escaped.
    """
    return filter_template.replace(placeholder, value)


def normalize_search_scope(scope: str) -> str:
    """ Map a search scope in either ldap3 form (BASE, LEVEL, SUBTREE) or in the short form that
    other LDAP clients use (base, one, sub) to the ldap3 form.
    """
    if scope in (BASE, LEVEL, SUBTREE):
        return scope
    if isinstance(scope, str) and scope.lower() in SEARCH_SCOPE_ALIASES:
        return SEARCH_SCOPE_ALIASES[scope.lower()]
    raise InvalidLdapParameterException('Invalid search scope {}. Scope must be one of {}'
                                        .format(scope, ', '.join([BASE, LEVEL, SUBTREE]
                                                                 + sorted(SEARCH_SCOPE_ALIASES))))


def process_ldap3_conn_return_value(ldap_connection: Connection, return_value: Union[tuple, bool]) -> tuple:
    """ Thread-safe ldap3 connections return a tuple containing a boolean about success,
    the result, the response, and the request. Non-thread-safe ldap3 connections just
    leave the other fields and return a boolean when performing search/bind/etc. and
    leave it up to the caller to manage thread safety.

    This function processes the return value so that it can be used without worrying about
    the return format.
    """
    if ldap_connection.strategy.thread_safe:
        success, result, response, req = return_value
    else:
        success = return_value
        result = ldap_connection.result
        response = ldap_connection.response
        req = ldap_connection.request
    return success, result, response, req


def remove_ad_search_refs(response: List[dict]) -> List[dict]:
    """ Many LDAP queries in Active Directory will include a number of generic search references
    to say 'maybe go look here for completeness'. This is especially common in setups where
    there's trusted domains or other domains in the same forest.

    We never follow them when authenticating, so this is a helper function to remove such references.

    :param response: A list of LDAP search responses.
    :returns: A filtered list, with search references removed.
    """
    if not response:
        return []
    return [entry for entry in response if entry.get('dn')]


def strip_trailing_separator(name: str, separator: str) -> str:
    """ Remove a single trailing separator from a name, e.g. 'CORP\\' -> 'CORP' """
    if name.endswith(separator):
        return name[:-len(separator)]
    return name
