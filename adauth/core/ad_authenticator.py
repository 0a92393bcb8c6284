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

""" Authentication of users against an AD domain, with their effective groups """

from ldap3 import FIRST, Connection, ServerPool
from ldap3.core.exceptions import LDAPException, LDAPServerPoolExhaustedError
from typing import Callable, List, Optional

import adauth.environment.ldap.ldap_format_utils as ldap_utils

from adauth import logging_utils
from adauth.core.ad_auth_config import ADAuthConfig
from adauth.core.ad_group_resolver import ADGroupResolver
from adauth.core.ad_objects import ADAuthenticatedUser, ADDirectoryEntry
from adauth.core.ad_search import ADSearchGateway
from adauth.core.ad_user_resolver import ADUserResolver
from adauth.core.credential_cache import CredentialCache
from adauth.exceptions import (
    ADAuthException,
    AuthenticatorClosedException,
    BindFailedException,
    DirectoryTransportException,
    MissingCredentialException,
    NoSuchUserException,
)


logger = logging_utils.get_logger()


class ADAuthenticator:

    def __init__(self, config: ADAuthConfig, error_callback: Callable[[ADAuthException], None] = None):
        """ Authenticates users against an AD domain by binding as them, then looks up their record and
        every group they belong to, directly or through nesting.

        :param config: The ADAuthConfig describing the domain and how to search it.
        :param error_callback: An optional function that is given every exception raised from authenticate,
                               for observability. Exceptions raised by the callback are logged and ignored.
        """
        self.config = config
        self.error_callback = error_callback
        self.search_gateway = ADSearchGateway(include_raw=config.include_raw)
        self.user_resolver = ADUserResolver(config, self.search_gateway)
        self.group_resolver = ADGroupResolver(config, self.search_gateway)
        self.credential_cache = None
        if config.cache:
            self.credential_cache = CredentialCache(config.cache_size, config.cache_expiry_seconds,
                                                    config.cache_hash_rounds)
        self.closed = False

    def _close_connection(self, conn: Connection):
        # the socket may already be broken when we're cleaning up after a failure
        try:
            conn.unbind()
        except LDAPException as ex:
            logger.debug('Error while closing connection to AD domain %s: %s', self.config.domain_dns_name, ex)

    def _create_connection(self, user: str, password: str) -> Connection:
        """ Open a connection to the domain, secure it, and bind as the specified user. Each server is
        tried once, and a failure is never retried, so the password is sent at most once per call.
        """
        # our servers were either user specified (in which case it's a list of ordered preferences) or
        # were discovered automatically (in which case they're ordered by RTT), so use the FIRST strategy
        # to either contact the first preferred server or the fastest/closest server.
        # active=1 makes the pool give up after one pass over the servers rather than cycling forever
        server_pool = ServerPool(servers=self.config.get_ldap_servers(), pool_strategy=FIRST, active=1,
                                 exhaust=True)
        conn = Connection(server_pool, user=user, password=password,
                          authentication=self.config.authentication_mechanism,
                          client_strategy=self.config.client_strategy, source_address=self.config.source_ip,
                          receive_timeout=self.config.receive_timeout)
        try:
            conn.open()
            logger.debug('Opened connection to AD domain %s: %s', self.config.domain_dns_name, conn)
            if self.config.encrypt_connections:
                # if we're using LDAPS, don't StartTLS
                if not conn.server.ssl:
                    tls_started = conn.start_tls()
                    if not tls_started:
                        raise DirectoryTransportException('Unable to StartTLS on connection to domain. Please check '
                                                          'the server(s) to ensure that they have properly '
                                                          'configured certificates.')
                logger.debug('Successfully secured connection to AD domain %s', self.config.domain_dns_name)
            bind_resp = conn.bind()
            bound, result, _, _ = ldap_utils.process_ldap3_conn_return_value(conn, bind_resp)
        except LDAPServerPoolExhaustedError as ex:
            self._close_connection(conn)
            raise DirectoryTransportException('None of the LDAP servers for AD domain {} could be reached: {}'
                                              .format(self.config.domain_dns_name, ex))
        except LDAPException as ex:
            self._close_connection(conn)
            raise DirectoryTransportException('Failed to connect to AD domain {}: {}'
                                              .format(self.config.domain_dns_name, ex))
        except DirectoryTransportException:
            self._close_connection(conn)
            raise
        if not bound:
            self._close_connection(conn)
            result_code = result.get('result') if result else None
            raise BindFailedException('Failed to bind to {} as {}. LDAP result: {}'
                                      .format(self.config.domain_dns_name, user, result), result_code=result_code)
        logger.debug('Successfully bound connection to AD domain %s as %s', self.config.domain_dns_name, user)
        return conn

    def _handle_error(self, error: ADAuthException):
        logger.debug('Authentication error: %s', error)
        if self.error_callback is None:
            return
        try:
            self.error_callback(error)
        except Exception as callback_ex:
            logger.warning('Error callback raised an exception while handling %s: %s',
                           type(error).__name__, callback_ex)

    def _authenticate(self, username: str, password: str) -> ADAuthenticatedUser:
        if self.closed:
            raise AuthenticatorClosedException('This authenticator has been closed and can no longer be used')
        if not password:
            raise MissingCredentialException('No password was given for {}. A password is required to '
                                             'authenticate'.format(username))
        if self.credential_cache is not None:
            cached_user = self.credential_cache.lookup(username, password)
            if cached_user is not None:
                return cached_user

        conn = self._create_connection(username, password)
        try:
            user_entry = self.user_resolver.find_user(conn, username)
            if user_entry is None:
                raise NoSuchUserException('Bound to the domain as {} but no user record matched'.format(username),
                                          identifier=username)
            groups = []
            if self.config.group_search_enabled:
                groups = self.group_resolver.resolve_groups(conn, user_entry)
        finally:
            self._close_connection(conn)

        user = ADAuthenticatedUser.from_entry(user_entry, groups)
        if self.credential_cache is not None:
            try:
                self.credential_cache.store(username, password, user)
            except Exception as ex:
                logger.warning('Failed to cache the authentication result for %s: %s', username, ex)
        logger.info('Authenticated %s as %s with %s groups', username, user.distinguished_name, len(groups))
        return user

    def authenticate(self, username: str, password: str) -> ADAuthenticatedUser:
        """ Authenticate a user and return their record along with all of their groups.

        :param username: The login identifier. This may be a down-level logon name (DOMAIN\\user), a user
                         principal name (user@domain), a distinguished name, or a bare sAMAccountName,
                         depending on which the domain and authentication mechanism accept.
        :param password: The user's password. Must not be empty.
        :returns: An ADAuthenticatedUser.
        :raises: MissingCredentialException if no password is given.
        :raises: BindFailedException if the domain rejects the credentials.
        :raises: DirectoryTransportException if the domain can't be reached.
        :raises: NoSuchUserException if the bind succeeds but no user record matches the username.
        :raises: AmbiguousIdentityException if more than one user record matches the username.
        :raises: UnknownDomainException if a down-level logon name is for a different domain.
        :raises: GroupResolutionException if the user's groups can't be resolved.
        """
        try:
            return self._authenticate(username, password)
        except ADAuthException as ex:
            self._handle_error(ex)
            raise

    def find_user(self, ldap_connection: Connection, identifier: str) -> Optional[ADDirectoryEntry]:
        """ Find a user on a connection managed by the caller. See ADUserResolver.find_user. """
        return self.user_resolver.find_user(ldap_connection, identifier)

    def find_groups(self, ldap_connection: Connection, user: ADDirectoryEntry) -> List[ADDirectoryEntry]:
        """ Resolve the groups of an entry on a connection managed by the caller. See
        ADGroupResolver.resolve_groups.
        """
        return self.group_resolver.resolve_groups(ldap_connection, user)

    def clear_cache(self):
        if self.credential_cache is not None:
            self.credential_cache.reset()

    def close(self):
        """ Drop all cached credentials and stop accepting authentication requests """
        self.clear_cache()
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return 'ADAuthenticator(config={}, cache={})'.format(self.config, self.credential_cache is not None)

    def __str__(self):
        return self.__repr__()
