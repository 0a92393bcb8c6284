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

""" Configuration for authenticating against an AD domain """

from ldap3 import (
    NTLM,
    SAFE_SYNC,
    SIMPLE,
    SUBTREE,
    Server,
)
from typing import Callable, List, Union

import adauth.environment.ldap.ldap_constants as ldap_constants
import adauth.environment.ldap.ldap_format_utils as ldap_utils

from adauth import logging_utils
from adauth.core.ad_objects import ADDirectoryEntry
from adauth.environment.discovery.discovery_utils import discover_ldap_domain_controllers_in_domain
from adauth.environment.security.tls_utils import build_tls_settings
from adauth.exceptions import (
    ADAuthConfigurationException,
    InvalidLdapParameterException,
)


logger = logging_utils.get_logger()

SUPPORTED_AUTHENTICATION_MECHANISMS = [SIMPLE, NTLM]


class GroupFilter:
    """ Builds the filter used to find the groups an entry is a direct member of """

    def build_filter(self, entry: ADDirectoryEntry) -> str:
        raise NotImplementedError()


class TemplateGroupFilter(GroupFilter):

    def __init__(self, template: str, dn_property: str = ldap_constants.DN_PROPERTY,
                 username_property: str = ldap_constants.AD_ATTRIBUTE_SAMACCOUNT_NAME):
        """ A group filter made by substituting properties of an entry into a template.
        :param template: The filter template. Every {{dn}} is replaced with the entry's dn_property
                         and every {{username}} with the entry's username_property.
        :param dn_property: The property of the entry to use for {{dn}}. Defaults to the entry's
                            distinguished name.
        :param username_property: The property of the entry to use for {{username}}. Defaults to
                                  sAMAccountName.
        """
        self.template = template
        self.dn_property = dn_property
        self.username_property = username_property

    def build_filter(self, entry: ADDirectoryEntry) -> str:
        search_filter = self.template
        if ldap_constants.FILTER_PLACEHOLDER_DN in search_filter:
            dn_value = entry.get_property(self.dn_property)
            escaped_dn = ldap_utils.escape_dn_for_filter(str(dn_value)) if dn_value is not None else ''
            search_filter = ldap_utils.replace_filter_placeholder(search_filter, ldap_constants.FILTER_PLACEHOLDER_DN,
                                                                  escaped_dn)
        if ldap_constants.FILTER_PLACEHOLDER_USERNAME in search_filter:
            username = entry.get_property(self.username_property)
            escaped_username = ldap_utils.escape_filter_string(str(username)) if username is not None else ''
            search_filter = ldap_utils.replace_filter_placeholder(search_filter,
                                                                  ldap_constants.FILTER_PLACEHOLDER_USERNAME,
                                                                  escaped_username)
        return search_filter

    def __repr__(self):
        return 'TemplateGroupFilter(template={}, dn_property={}, username_property={})'.format(
            self.template, self.dn_property, self.username_property)


class ComputedGroupFilter(GroupFilter):

    def __init__(self, filter_function: Callable[[ADDirectoryEntry], str]):
        """ A group filter computed by a caller-supplied function that is given the entry whose groups
        are being looked up, and returns a complete filter.
        """
        self.filter_function = filter_function

    def build_filter(self, entry: ADDirectoryEntry) -> str:
        return self.filter_function(entry)

    def __repr__(self):
        return 'ComputedGroupFilter(filter_function={})'.format(self.filter_function)


def _validate_scope(scope, option_name: str) -> str:
    try:
        return ldap_utils.normalize_search_scope(scope)
    except InvalidLdapParameterException as ex:
        raise ADAuthConfigurationException('Invalid value for {}: {}'.format(option_name, ex.message))


class ADAuthConfig:

    def __init__(self, domain_dn: str,
                 ldap_servers_or_uris: List = None,
                 discover_ldap_servers: bool = True,
                 site: str = None,
                 dns_nameservers: List[str] = None,
                 source_ip: str = None,
                 search_base: str = None,
                 search_filter_by_dn: str = ldap_constants.DEFAULT_SEARCH_FILTER_BY_DN,
                 search_filter_by_upn: str = ldap_constants.DEFAULT_SEARCH_FILTER_BY_UPN,
                 search_filter_by_sam: str = ldap_constants.DEFAULT_SEARCH_FILTER_BY_SAM,
                 search_scope: str = SUBTREE,
                 search_attributes: List[str] = None,
                 group_search_base: str = None,
                 group_search_filter: Union[str, Callable[[ADDirectoryEntry], str]] =
                 ldap_constants.DEFAULT_GROUP_SEARCH_FILTER,
                 group_search_scope: str = SUBTREE,
                 group_search_attributes: List[str] = None,
                 group_dn_property: str = ldap_constants.DN_PROPERTY,
                 group_username_property: str = ldap_constants.AD_ATTRIBUTE_SAMACCOUNT_NAME,
                 group_search_enabled: bool = True,
                 primary_group_search_base: str = None,
                 primary_group_search_scope: str = SUBTREE,
                 group_search_max_workers: int = ldap_constants.DEFAULT_GROUP_SEARCH_MAX_WORKERS,
                 include_raw: bool = False,
                 cache: bool = False,
                 cache_size: int = ldap_constants.DEFAULT_CACHE_SIZE,
                 cache_expiry_seconds: int = ldap_constants.DEFAULT_CACHE_EXPIRY_SECONDS,
                 cache_hash_rounds: int = ldap_constants.DEFAULT_CACHE_HASH_ROUNDS,
                 encrypt_connections: bool = True,
                 ca_certificates: str = None,
                 authentication_mechanism: str = SIMPLE,
                 client_strategy: str = SAFE_SYNC,
                 connect_timeout: int = None,
                 receive_timeout: int = None):
        """ The options used to authenticate users against an AD domain and resolve their groups.

        :param domain_dn: Required. The root distinguished name of the AD domain, e.g. DC=corp,DC=example,DC=com
        :param ldap_servers_or_uris: A list of either Server objects from the ldap3 library, or string LDAP
                                     uris. If not specified, LDAP servers are discovered in DNS.
        :param discover_ldap_servers: If true, and LDAP servers/uris are not specified, then LDAP servers for
                                      the domain will be discovered in DNS. Defaults to True.
        :param site: The Active Directory site to discover LDAP servers in. Only relevant for discovery.
        :param dns_nameservers: Nameservers to use for discovery instead of the system ones.
        :param source_ip: A source IP address to use for DNS and LDAP connections.
        :param search_base: The base DN to search for users beneath. Defaults to the domain DN.
        :param search_filter_by_dn: Filter used to find users logging in with a distinguished name.
                                    Every {{dn}} is replaced.
        :param search_filter_by_upn: Filter used to find users logging in as user@domain.
                                     Every {{upn}} is replaced.
        :param search_filter_by_sam: Filter used to find users logging in as DOMAIN\\user or just user.
                                     Every {{username}} is replaced.
        :param search_scope: The scope of user searches. Defaults to subtree.
        :param search_attributes: Attributes to read for users. Defaults to None, meaning all attributes.
        :param group_search_base: The base DN to search for groups beneath. Defaults to the domain DN.
        :param group_search_filter: Either a filter template, in which every {{dn}} is replaced with the
                                    group_dn_property of the entry and every {{username}} with its
                                    group_username_property, or a function that takes the entry and
                                    returns a filter.
        :param group_search_scope: The scope of group searches. Defaults to subtree.
        :param group_search_attributes: Attributes to read for groups. Defaults to None, meaning all.
        :param group_dn_property: The property of an entry used for {{dn}} in the group filter.
                                  Defaults to the distinguished name.
        :param group_username_property: The property of an entry used for {{username}} in the group filter.
                                        Defaults to sAMAccountName.
        :param group_search_enabled: If false, groups are not resolved and users are returned with an
                                     empty group list. Defaults to True.
        :param primary_group_search_base: The base DN to search for primary groups by SID beneath.
                                          Defaults to the domain DN.
        :param primary_group_search_scope: The scope of primary group searches. Defaults to subtree.
        :param group_search_max_workers: The most nested group searches to run at once when the
                                         connection is thread-safe. Defaults to 8. 1 disables concurrency.
        :param include_raw: If true, keep the raw binary attribute values on every entry. Defaults to False.
        :param cache: If true, successful authentications are cached. Defaults to False.
        :param cache_size: The most credentials to cache. Defaults to 100.
        :param cache_expiry_seconds: How long cached credentials are valid for. Defaults to 300.
        :param cache_hash_rounds: The bcrypt cost factor for hashing cached passwords. Defaults to 12.
        :param encrypt_connections: Whether LDAP connections will be secured using StartTLS if they're
                                    not already using LDAPS. Defaults to True.
        :param ca_certificates: A path to a file of CA certificates, or an http(s) URL to fetch them from,
                                used to verify LDAP servers. If not specified, peer certificates are
                                not verified.
        :param authentication_mechanism: SIMPLE or NTLM. Defaults to SIMPLE.
        :param client_strategy: The ldap3 client strategy for connections. Defaults to SAFE_SYNC, which is
                                thread-safe and allows concurrent group searches. Strategies that restart
                                connections resend the password on every reconnect, so avoid them.
        :param connect_timeout: Seconds to wait when connecting to an LDAP server. Defaults to None.
        :param receive_timeout: Seconds to wait for a response to any request. Defaults to None.
        :raises: ADAuthConfigurationException if any option is missing or invalid.
        """
        if not domain_dn:
            raise ADAuthConfigurationException('Domain DN not defined (domain_dn)')
        if not ldap_utils.is_dn(domain_dn):
            raise ADAuthConfigurationException('Domain DN {} is not a valid distinguished name'.format(domain_dn))
        self.domain_dn = domain_dn
        self.domain_dns_name = ldap_utils.construct_domain_from_ldap_base_dn(domain_dn)

        self.search_base = search_base if search_base else domain_dn
        self.search_filter_by_dn = search_filter_by_dn
        self.search_filter_by_upn = search_filter_by_upn
        self.search_filter_by_sam = search_filter_by_sam
        for option_name, template in [('search_filter_by_dn', search_filter_by_dn),
                                      ('search_filter_by_upn', search_filter_by_upn),
                                      ('search_filter_by_sam', search_filter_by_sam)]:
            if not template or not isinstance(template, str):
                raise ADAuthConfigurationException('{} must be a non-empty filter string'.format(option_name))
        self.search_scope = _validate_scope(search_scope, 'search_scope')
        self.search_attributes = list(search_attributes) if search_attributes is not None else None

        self.group_search_base = group_search_base if group_search_base else domain_dn
        self.group_search_scope = _validate_scope(group_search_scope, 'group_search_scope')
        self.group_search_attributes = list(group_search_attributes) if group_search_attributes is not None else None
        self.group_dn_property = group_dn_property
        self.group_username_property = group_username_property
        self.group_search_enabled = group_search_enabled and bool(group_search_filter)
        self.group_filter = self._build_group_filter(group_search_filter)
        self.primary_group_search_base = primary_group_search_base if primary_group_search_base else domain_dn
        self.primary_group_search_scope = _validate_scope(primary_group_search_scope, 'primary_group_search_scope')
        if group_search_max_workers is None or group_search_max_workers < 1:
            raise ADAuthConfigurationException('group_search_max_workers must be at least 1')
        self.group_search_max_workers = group_search_max_workers

        self.include_raw = include_raw
        self.cache = cache
        if cache and (cache_size is None or cache_size < 1):
            raise ADAuthConfigurationException('cache_size must be at least 1 when caching is enabled')
        if cache and (cache_expiry_seconds is None or cache_expiry_seconds <= 0):
            raise ADAuthConfigurationException('cache_expiry_seconds must be positive when caching is enabled')
        self.cache_size = cache_size
        self.cache_expiry_seconds = cache_expiry_seconds
        self.cache_hash_rounds = cache_hash_rounds

        if authentication_mechanism not in SUPPORTED_AUTHENTICATION_MECHANISMS:
            raise ADAuthConfigurationException('Unsupported authentication mechanism {}. Supported mechanisms are {}'
                                               .format(authentication_mechanism,
                                                       ', '.join(SUPPORTED_AUTHENTICATION_MECHANISMS)))
        self.authentication_mechanism = authentication_mechanism
        self.client_strategy = client_strategy
        self.connect_timeout = connect_timeout
        self.receive_timeout = receive_timeout
        self.source_ip = source_ip
        self.encrypt_connections = encrypt_connections
        self.ca_certificates = ca_certificates

        if not ldap_servers_or_uris and discover_ldap_servers:
            ldap_servers_or_uris = discover_ldap_domain_controllers_in_domain(self.domain_dns_name, site=site,
                                                                              dns_nameservers=dns_nameservers,
                                                                              source_ip=source_ip,
                                                                              secure=encrypt_connections)
        if not ldap_servers_or_uris:
            raise ADAuthConfigurationException('No LDAP servers were specified or discovered for domain {}'
                                               .format(self.domain_dns_name))
        self.ldap_servers = []
        self.ldap_uris = []
        self.set_ldap_servers_or_uris(ldap_servers_or_uris)

    def _build_group_filter(self, group_search_filter) -> GroupFilter:
        if isinstance(group_search_filter, GroupFilter):
            return group_search_filter
        if isinstance(group_search_filter, str):
            return TemplateGroupFilter(group_search_filter, self.group_dn_property, self.group_username_property)
        if callable(group_search_filter):
            return ComputedGroupFilter(group_search_filter)
        if group_search_filter is None:
            return None
        raise ADAuthConfigurationException('group_search_filter must be a filter string or a function, not {}'
                                           .format(type(group_search_filter)))

    def _copy_ldap_server(self, serv: Server) -> Server:
        """ Copies an LDAP Server object. The normal python copy doesn't work on Server objects because
        they have locks in them. But sharing server objects across threads/connections can cause a lot of
        issues where shared state gets messed up by failed queries. So we "copy" the important attributes.
        """
        return Server(serv.host, port=serv.port, use_ssl=serv.ssl,
                      allowed_referral_hosts=serv.allowed_referral_hosts,
                      get_info=serv.get_info, tls=serv.tls, formatter=serv.custom_formatter,
                      connect_timeout=serv.connect_timeout, mode=serv.mode, validator=serv.custom_validator)

    def get_ldap_servers(self) -> List[Server]:
        return [self._copy_ldap_server(serv) for serv in self.ldap_servers]

    def get_ldap_uris(self) -> List[str]:
        return list(self.ldap_uris)

    def set_ldap_servers_or_uris(self, ldap_servers_or_uris: List):
        """ Set our list of LDAP servers or LDAP URIs. The list provided can be a list of
        Server objects, URIs, or a mixture.
        """
        ldap_uris = []
        ldap_server_objs = []
        tls_setting = None
        # users can specify Server objects if they want a custom Tls setting for
        # each one, but if they provide strings then we just make our own for each
        for serv in ldap_servers_or_uris:
            if isinstance(serv, str):
                if tls_setting is None and (self.encrypt_connections or serv.lower().startswith('ldaps://')):
                    tls_setting = build_tls_settings(self.ca_certificates)
                ldap_server_objs.append(Server(serv, tls=tls_setting, connect_timeout=self.connect_timeout))
                ldap_uris.append(serv)
            elif isinstance(serv, Server):
                copied_server = self._copy_ldap_server(serv)
                ldap_server_objs.append(copied_server)
                ldap_uris.append(serv.name)
            else:
                raise ADAuthConfigurationException('Invalid type for element of ldap server list, {}; '
                                                   'elements must be strings or Server objects'.format(type(serv)))
        self.ldap_servers = ldap_server_objs
        self.ldap_uris = ldap_uris
        logger.debug('Using LDAP servers %s for domain %s', ldap_uris, self.domain_dns_name)

    def __repr__(self):
        return ('ADAuthConfig(domain_dn={}, ldap_uris={}, search_base={}, group_search_base={}, '
                'group_filter={}, cache={})'.format(self.domain_dn, self.ldap_uris, self.search_base,
                                                    self.group_search_base, self.group_filter, self.cache))

    def __str__(self):
        return self.__repr__()
