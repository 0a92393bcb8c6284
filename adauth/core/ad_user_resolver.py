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

""" Resolution of login identifiers to user records """

from ldap3 import Connection
from typing import List, Optional

import adauth.environment.ldap.ldap_constants as ldap_constants
import adauth.environment.ldap.ldap_format_utils as ldap_utils

from adauth import logging_utils
from adauth.core.ad_auth_config import ADAuthConfig
from adauth.core.ad_objects import ADDirectoryEntry
from adauth.core.ad_search import ADSearchGateway
from adauth.exceptions import (
    AmbiguousIdentityException,
    InvalidIdentifierException,
    UnknownDomainException,
)


logger = logging_utils.get_logger()

# the user record must carry these for primary group and nested group resolution to work
REQUIRED_USER_ATTRIBUTES = [ldap_constants.AD_ATTRIBUTE_PRIMARY_GROUP_ID, ldap_constants.AD_ATTRIBUTE_MEMBER_OF]


def _normalize_netbios_name(name: str) -> str:
    return ldap_utils.strip_trailing_separator(name, ldap_constants.DOWN_LEVEL_LOGON_NAME_SEPARATOR).upper()


class ADUserResolver:

    def __init__(self, config: ADAuthConfig, search_gateway: ADSearchGateway):
        self.config = config
        self.search_gateway = search_gateway

    def _figure_out_user_search_attributes(self) -> Optional[List[str]]:
        if self.config.search_attributes is None:
            return None
        attrs = list(self.config.search_attributes)
        for attr in REQUIRED_USER_ATTRIBUTES:
            if attr not in attrs:
                attrs.append(attr)
        return attrs

    def _verify_netbios_domain(self, ldap_connection: Connection, netbios_name: str):
        """ Down-level logon names carry the netbios name of the user's domain. Make sure it's the
        domain we're configured for, by asking the domain object for its principal name.
        """
        domain_filter = ldap_constants.DOMAIN_LOOKUP_FILTER_FORMAT.format(
            attr=ldap_constants.AD_ATTRIBUTE_DISTINGUISHED_NAME,
            domain_dn=ldap_utils.escape_dn_for_filter(self.config.domain_dn))
        domain_entries = self.search_gateway.search(ldap_connection, self.config.domain_dn, domain_filter,
                                                    self.config.search_scope,
                                                    attributes=[ldap_constants.AD_ATTRIBUTE_PRINCIPAL_NAME])
        if not domain_entries:
            raise UnknownDomainException('The domain {} could not be found, so the domain {} in the login name '
                                         'could not be verified'.format(self.config.domain_dn, netbios_name),
                                         netbios_name=netbios_name)
        principal_name = domain_entries[0].get(ldap_constants.AD_ATTRIBUTE_PRINCIPAL_NAME, unpack_one_item_lists=True)
        if not principal_name or _normalize_netbios_name(principal_name) != _normalize_netbios_name(netbios_name):
            raise UnknownDomainException('The domain {} in the login name does not match the domain {}, whose '
                                         'name is {}'.format(netbios_name, self.config.domain_dn, principal_name),
                                         netbios_name=netbios_name)

    def build_user_search_filter(self, ldap_connection: Connection, identifier: str) -> str:
        """ Work out which form of login identifier we've been given and build the matching filter.
        Down-level logon names (DOMAIN\\user) have their domain verified against the directory first.
        """
        if ldap_constants.DOWN_LEVEL_LOGON_NAME_SEPARATOR in identifier:
            netbios_name, account = identifier.split(ldap_constants.DOWN_LEVEL_LOGON_NAME_SEPARATOR, 1)
            self._verify_netbios_domain(ldap_connection, netbios_name)
            return ldap_utils.replace_filter_placeholder(self.config.search_filter_by_sam,
                                                         ldap_constants.FILTER_PLACEHOLDER_USERNAME,
                                                         ldap_utils.escape_filter_string(account))
        if ldap_constants.USER_PRINCIPAL_NAME_SEPARATOR in identifier:
            return ldap_utils.replace_filter_placeholder(self.config.search_filter_by_upn,
                                                         ldap_constants.FILTER_PLACEHOLDER_UPN,
                                                         ldap_utils.escape_filter_string(identifier))
        if ldap_utils.is_dn(identifier):
            return ldap_utils.replace_filter_placeholder(self.config.search_filter_by_dn,
                                                         ldap_constants.FILTER_PLACEHOLDER_DN,
                                                         ldap_utils.escape_dn_for_filter(identifier))
        return ldap_utils.replace_filter_placeholder(self.config.search_filter_by_sam,
                                                     ldap_constants.FILTER_PLACEHOLDER_USERNAME,
                                                     ldap_utils.escape_filter_string(identifier))

    def find_user(self, ldap_connection: Connection, identifier: str) -> Optional[ADDirectoryEntry]:
        """ Find the single user record matching a login identifier.
        :param ldap_connection: A bound connection to search with.
        :param identifier: A down-level logon name (DOMAIN\\user), a user principal name (user@domain),
                           a distinguished name, or a bare sAMAccountName.
        :returns: The user's entry, or None if no user matches.
        :raises: InvalidIdentifierException if the identifier is empty.
        :raises: UnknownDomainException if a down-level logon name is for a different domain.
        :raises: AmbiguousIdentityException if more than one user matches.
        """
        if not identifier:
            raise InvalidIdentifierException('A non-empty login identifier must be provided to find a user')
        search_filter = self.build_user_search_filter(ldap_connection, identifier)
        entries = self.search_gateway.search(ldap_connection, self.config.search_base, search_filter,
                                             self.config.search_scope,
                                             attributes=self._figure_out_user_search_attributes())
        if not entries:
            logger.debug('No user found for %s', identifier)
            return None
        if len(entries) > 1:
            raise AmbiguousIdentityException('Found {} users matching {}, but expected exactly one. The user '
                                             'search filters may be too broad'.format(len(entries), identifier),
                                             match_count=len(entries), identifier=identifier)
        logger.debug('Found user %s for %s', entries[0].distinguished_name, identifier)
        return entries[0]
