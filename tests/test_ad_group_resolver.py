"""
Tests for resolving effective group membership.
"""
from unittest.mock import patch

import pytest
from ldap3 import LEVEL
from ldap3.core.exceptions import LDAPSocketReceiveError

from adauth.core.ad_auth_config import ADAuthConfig
from adauth.core.ad_group_resolver import (
    ADGroupResolver,
    GroupResolutionContext,
    construct_primary_group_sid,
)
from adauth.core.ad_objects import ADDirectoryEntry
from adauth.core.ad_search import ADSearchGateway
from adauth.exceptions import (
    DirectoryTransportException,
    DomainSearchException,
    GroupResolutionException,
)

from conftest import DOMAIN_DN, DOMAIN_SID, make_entry


USER_DN = 'CN=alice,OU=Users,DC=corp,DC=example,DC=com'
SERVERS = ['ldap://dc1.corp.example.com']


def group_dn(name):
    return 'CN={},OU=Groups,DC=corp,DC=example,DC=com'.format(name)


def member_filter(dn):
    return '(&(objectCategory=group)(objectClass=group)(member={}))'.format(dn)


def group_entry(name, rid):
    return make_entry(group_dn(name), sid='{}-{}'.format(DOMAIN_SID, rid), sAMAccountName=name)


def user_entry(**attributes):
    return ADDirectoryEntry(USER_DN, dict(sAMAccountName='alice', **attributes),
                            object_sid='{}-1105'.format(DOMAIN_SID))


def _resolver(config):
    return ADGroupResolver(config, ADSearchGateway())


def _names(groups):
    return [group.name for group in groups]


class TestConstructPrimaryGroupSid:
    """Tests for construct_primary_group_sid"""

    def test_replaces_relative_id(self):
        """Should swap the last SID component for the primary group id"""
        assert construct_primary_group_sid('S-1-5-21-1-2-3-500', 512) == 'S-1-5-21-1-2-3-512'


class TestGroupResolutionContext:
    """Tests for GroupResolutionContext"""

    def test_claims_each_group_once(self):
        """Should only allow a group to be claimed the first time"""
        context = GroupResolutionContext()
        group = ADDirectoryEntry(group_dn('Staff'), {}, object_sid='S-1-5-21-1-2-3-2001')

        assert context.claim(group) is True
        assert context.claim(group) is False
        assert context.get_groups() == [group]

    def test_falls_back_to_case_insensitive_dn(self):
        """Should treat dns differing only in case as the same group when there is no SID"""
        context = GroupResolutionContext()

        assert context.claim(ADDirectoryEntry('CN=Staff,DC=corp', {})) is True
        assert context.claim(ADDirectoryEntry('cn=staff,dc=corp', {})) is False


class TestResolveGroups:
    """Tests for ADGroupResolver.resolve_groups"""

    def test_direct_groups(self, ad_config, fake_connection):
        """Should return the groups the user is directly a member of"""
        fake_connection.add_results(member_filter(USER_DN), [group_entry('Staff', 2001), group_entry('VPN', 2002)])

        groups = _resolver(ad_config).resolve_groups(fake_connection, user_entry())

        assert _names(groups) == ['Staff', 'VPN']

    def test_nested_groups(self, ad_config, fake_connection):
        """Should follow nesting, returning siblings before their children"""
        fake_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002)])
        fake_connection.add_results(member_filter(group_dn('A')), [group_entry('C', 2003)])
        fake_connection.add_results(member_filter(group_dn('B')), [group_entry('C', 2003)])

        groups = _resolver(ad_config).resolve_groups(fake_connection, user_entry())

        assert _names(groups) == ['A', 'B', 'C']

    def test_membership_cycle(self, ad_config, fake_connection):
        """Should tolerate groups that are members of each other"""
        fake_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001)])
        fake_connection.add_results(member_filter(group_dn('A')), [group_entry('B', 2002)])
        fake_connection.add_results(member_filter(group_dn('B')), [group_entry('A', 2001)])

        groups = _resolver(ad_config).resolve_groups(fake_connection, user_entry())

        assert _names(groups) == ['A', 'B']
        assert fake_connection.searched_filters().count(member_filter(group_dn('A'))) == 1

    def test_primary_group(self, ad_config, fake_connection):
        """Should look up the primary group by SID, put it first, and add it to memberOf"""
        user = ADDirectoryEntry(USER_DN, {'sAMAccountName': 'alice', 'primaryGroupID': 512,
                                          'memberOf': [group_dn('Staff')]},
                                object_sid='S-1-5-21-1-2-3-500')
        fake_connection.add_results('(objectSid=S-1-5-21-1-2-3-512)', [group_entry('Domain Admins', 512)])
        fake_connection.add_results(member_filter(USER_DN), [group_entry('Staff', 2001)])

        groups = _resolver(ad_config).resolve_groups(fake_connection, user)

        assert _names(groups) == ['Domain Admins', 'Staff']
        assert user.member_of == [group_dn('Domain Admins'), group_dn('Staff')]

    def test_primary_group_search_settings(self, fake_connection):
        """Should search for primary groups at their own base and scope"""
        config = ADAuthConfig(DOMAIN_DN, ldap_servers_or_uris=SERVERS,
                              primary_group_search_base='OU=Builtin,DC=corp,DC=example,DC=com',
                              primary_group_search_scope='one')

        _resolver(config).resolve_groups(fake_connection, user_entry(primaryGroupID=513))

        sid_requests = [request for request in fake_connection.requests
                        if request['search_filter'] == '(objectSid={}-513)'.format(DOMAIN_SID)]
        assert len(sid_requests) == 1
        assert sid_requests[0]['search_base'] == 'OU=Builtin,DC=corp,DC=example,DC=com'
        assert sid_requests[0]['search_scope'] == LEVEL

    def test_missing_primary_group(self, ad_config, fake_connection):
        """Should carry on when the primary group can't be found"""
        user = user_entry(primaryGroupID=513)

        groups = _resolver(ad_config).resolve_groups(fake_connection, user)

        assert groups == []
        assert user.member_of == []

    def test_username_placeholder(self, fake_connection):
        """Should substitute the configured username property"""
        config = ADAuthConfig(DOMAIN_DN, ldap_servers_or_uris=SERVERS,
                              group_search_filter='(&(objectClass=posixGroup)(memberUid={{username}}))')

        _resolver(config).resolve_groups(fake_connection, user_entry())

        assert fake_connection.searched_filters() == ['(&(objectClass=posixGroup)(memberUid=alice))']

    def test_dn_placeholder_is_escaped(self, ad_config, fake_connection):
        """Should escape filter characters in dns substituted into the template"""
        user = ADDirectoryEntry('CN=alice (admin),DC=corp,DC=example,DC=com', {})

        _resolver(ad_config).resolve_groups(fake_connection, user)

        assert fake_connection.searched_filters() == [
            member_filter('CN=alice \\28admin\\29,DC=corp,DC=example,DC=com')]

    def test_computed_filter(self, fake_connection):
        """Should call a filter function with the entry being expanded"""
        config = ADAuthConfig(DOMAIN_DN, ldap_servers_or_uris=SERVERS,
                              group_search_filter=lambda entry: '(member:1.2.840.113556.1.4.1941:={})'.format(
                                  entry.distinguished_name))
        fake_connection.add_results('(member:1.2.840.113556.1.4.1941:={})'.format(USER_DN),
                                    [group_entry('Staff', 2001)])

        groups = _resolver(config).resolve_groups(fake_connection, user_entry())

        assert _names(groups) == ['Staff']

    def test_missing_entry(self, ad_config, fake_connection):
        """Should refuse to resolve groups for no entry"""
        with pytest.raises(GroupResolutionException):
            _resolver(ad_config).resolve_groups(fake_connection, None)


class TestResolveGroupsFailures:
    """Tests for failures during group resolution"""

    def test_transport_failure_at_depth(self, ad_config, fake_connection):
        """Should fail the whole resolution when a nested search fails"""
        fake_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001)])
        fake_connection.fail_search(member_filter(group_dn('A')), LDAPSocketReceiveError('timed out'))

        with pytest.raises(GroupResolutionException) as exc_info:
            _resolver(ad_config).resolve_groups(fake_connection, user_entry())

        assert isinstance(exc_info.value.original_exception, DirectoryTransportException)

    def test_status_failure_at_depth(self, ad_config, fake_connection):
        """Should fail the whole resolution when a nested search returns an error status"""
        fake_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001)])
        fake_connection.set_status(member_filter(group_dn('A')), 1)

        with pytest.raises(GroupResolutionException) as exc_info:
            _resolver(ad_config).resolve_groups(fake_connection, user_entry())

        assert isinstance(exc_info.value.original_exception, DomainSearchException)

    def test_failure_in_concurrent_branch(self, ad_config, thread_safe_connection):
        """Should fail the whole resolution when one of several concurrent branches fails"""
        thread_safe_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002)])
        thread_safe_connection.fail_search(member_filter(group_dn('B')), LDAPSocketReceiveError('timed out'))

        with pytest.raises(GroupResolutionException):
            _resolver(ad_config).resolve_groups(thread_safe_connection, user_entry())


class TestResolveGroupsConcurrency:
    """Tests for concurrent expansion of sibling groups"""

    def test_concurrent_result_matches_claim_order(self, ad_config, thread_safe_connection):
        """Should return siblings in order, then shared children once"""
        thread_safe_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002),
                                                                    group_entry('C', 2003)])
        for name in ('A', 'B', 'C'):
            thread_safe_connection.add_results(member_filter(group_dn(name)), [group_entry('D', 2004)])

        groups = _resolver(ad_config).resolve_groups(thread_safe_connection, user_entry())

        assert _names(groups) == ['A', 'B', 'C', 'D']
        assert thread_safe_connection.searched_filters().count(member_filter(group_dn('D'))) == 1

    def test_nested_order_independent_of_search_completion(self, ad_config, thread_safe_connection):
        """Should list groups nested under earlier siblings first, even when their search finishes last"""
        thread_safe_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002)])
        thread_safe_connection.add_results(member_filter(group_dn('A')), [group_entry('X', 2003)])
        thread_safe_connection.add_results(member_filter(group_dn('B')), [group_entry('Y', 2004)])
        thread_safe_connection.delay_search(member_filter(group_dn('A')), 0.3)

        groups = _resolver(ad_config).resolve_groups(thread_safe_connection, user_entry())

        assert _names(groups) == ['A', 'B', 'X', 'Y']

    def test_concurrent_and_sequential_order_match(self, ad_config, fake_connection, thread_safe_connection):
        """Should produce the same order with or without threads"""
        for connection in (fake_connection, thread_safe_connection):
            connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002)])
            connection.add_results(member_filter(group_dn('A')), [group_entry('C', 2003)])
            connection.add_results(member_filter(group_dn('B')), [group_entry('D', 2004), group_entry('C', 2003)])
            connection.add_results(member_filter(group_dn('C')), [group_entry('E', 2005)])
        thread_safe_connection.delay_search(member_filter(group_dn('A')), 0.2)

        sequential = _resolver(ad_config).resolve_groups(fake_connection, user_entry())
        concurrent = _resolver(ad_config).resolve_groups(thread_safe_connection, user_entry())

        assert _names(sequential) == ['A', 'B', 'C', 'D', 'E']
        assert _names(concurrent) == _names(sequential)

    def test_sequential_for_classic_connection(self, ad_config, fake_connection):
        """Should not use threads when the connection isn't thread-safe"""
        fake_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002)])

        with patch('adauth.core.ad_group_resolver.ThreadPoolExecutor') as mock_executor:
            groups = _resolver(ad_config).resolve_groups(fake_connection, user_entry())

        mock_executor.assert_not_called()
        assert _names(groups) == ['A', 'B']

    def test_single_worker_is_sequential(self, thread_safe_connection):
        """Should not use threads when limited to one worker"""
        config = ADAuthConfig(DOMAIN_DN, ldap_servers_or_uris=SERVERS, group_search_max_workers=1)
        thread_safe_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002)])

        with patch('adauth.core.ad_group_resolver.ThreadPoolExecutor') as mock_executor:
            _resolver(config).resolve_groups(thread_safe_connection, user_entry())

        mock_executor.assert_not_called()

    def test_worker_limit(self, thread_safe_connection):
        """Should bound the pool by the configured worker limit"""
        config = ADAuthConfig(DOMAIN_DN, ldap_servers_or_uris=SERVERS, group_search_max_workers=2)
        thread_safe_connection.add_results(member_filter(USER_DN), [group_entry('A', 2001), group_entry('B', 2002),
                                                                    group_entry('C', 2003)])

        with patch('adauth.core.ad_group_resolver.ThreadPoolExecutor') as mock_executor:
            _resolver(config).resolve_groups(thread_safe_connection, user_entry())

        mock_executor.assert_called_once_with(max_workers=2)
