"""
Tests for discovering domain controllers in DNS.
"""
from unittest.mock import MagicMock, patch

import dns.exception
from ldap3.core.exceptions import LDAPSocketOpenError

from adauth.environment.discovery import discovery_utils


def _srv_record(target, port, priority, weight):
    record = MagicMock()
    record.target.to_text.return_value = target
    record.port = port
    record.priority = priority
    record.weight = weight
    return record


class TestResolveRecordInDns:
    """Tests for SRV record resolution"""

    def test_orders_by_priority_then_weight(self):
        """Should prefer low priority, then high weight"""
        resolver = MagicMock()
        resolver.resolve.return_value = [_srv_record('dc3.corp.example.com', 389, 10, 100),
                                         _srv_record('dc1.corp.example.com', 389, 0, 50),
                                         _srv_record('dc2.corp.example.com', 389, 0, 100)]

        with patch('adauth.environment.discovery.discovery_utils.dns.resolver.Resolver', return_value=resolver):
            records = discovery_utils._resolve_record_in_dns('_ldap._tcp.dc._msdcs.corp.example.com', 'SRV',
                                                             ['10.0.0.1'], None)

        assert [record[0] for record in records] == ['dc2.corp.example.com', 'dc1.corp.example.com',
                                                     'dc3.corp.example.com']
        assert resolver.nameservers == ['10.0.0.1']

    def test_dns_failure(self):
        """Should return no records when the lookup fails"""
        resolver = MagicMock()
        resolver.resolve.side_effect = dns.exception.Timeout()

        with patch('adauth.environment.discovery.discovery_utils.dns.resolver.Resolver', return_value=resolver):
            assert discovery_utils._resolve_record_in_dns('_ldap._tcp.dc._msdcs.corp.example.com', 'SRV',
                                                          None, None) == []


class TestDiscoverLdapDomainControllers:
    """Tests for discover_ldap_domain_controllers_in_domain"""

    def test_site_aware_record(self):
        """Should look up the site specific record when a site is given"""
        with patch.object(discovery_utils, '_resolve_record_in_dns', return_value=[]) as mock_resolve:
            discovery_utils.discover_ldap_domain_controllers_in_domain('corp.example.com', site='east')

        assert mock_resolve.call_args[0][0] == '_ldap._tcp.east._sites.dc._msdcs.corp.example.com'

    def test_orders_by_rtt_and_drops_unreachable(self):
        """Should sort reachable servers by round trip time"""
        records = [('dc1.corp.example.com', 389, 0, 100), ('DC1.corp.example.com', 389, 0, 100),
                   ('dc2.corp.example.com', 389, 0, 100), ('dc3.corp.example.com', 389, 0, 100)]
        rtts = {
            'dc1.corp.example.com': (0.5, 'ldap://dc1.corp.example.com:389'),
            'dc2.corp.example.com': (0.1, 'ldap://dc2.corp.example.com:389'),
            'dc3.corp.example.com': None,
        }

        def fake_check(host, port, source_ip, secure):
            return rtts[host.lower()]

        with patch.object(discovery_utils, '_resolve_record_in_dns', return_value=records):
            with patch.object(discovery_utils, '_check_ldap_server_availability_and_rtt',
                              side_effect=fake_check) as mock_check:
                uris = discovery_utils.discover_ldap_domain_controllers_in_domain('corp.example.com')

        assert uris == ['ldap://dc2.corp.example.com:389', 'ldap://dc1.corp.example.com:389']
        assert mock_check.call_count == 3

    def test_server_limit(self):
        """Should keep only the fastest servers up to the limit"""
        records = [('dc1.corp.example.com', 389, 0, 100), ('dc2.corp.example.com', 389, 0, 100)]

        def fake_check(host, port, source_ip, secure):
            return (0.1 if host == 'dc1.corp.example.com' else 0.2), 'ldap://{}:{}'.format(host, port)

        with patch.object(discovery_utils, '_resolve_record_in_dns', return_value=records):
            with patch.object(discovery_utils, '_check_ldap_server_availability_and_rtt', side_effect=fake_check):
                uris = discovery_utils.discover_ldap_domain_controllers_in_domain('corp.example.com',
                                                                                  server_limit=1)

        assert uris == ['ldap://dc1.corp.example.com:389']


class TestCheckLdapServerAvailability:
    """Tests for checking if an LDAP server is reachable"""

    def test_unreachable(self):
        """Should return None and close the connection when the server can't be reached"""
        conn = MagicMock()
        conn.open.side_effect = LDAPSocketOpenError('unreachable')

        with patch.object(discovery_utils, 'Connection', return_value=conn):
            assert discovery_utils._check_ldap_server_availability_and_rtt('dc1', 389, None, True) is None

        conn.unbind.assert_called_once()

    def test_start_tls_failure(self):
        """Should treat servers that can't StartTLS as unavailable when security is required"""
        conn = MagicMock()
        conn.start_tls.return_value = False

        with patch.object(discovery_utils, 'Connection', return_value=conn):
            assert discovery_utils._check_ldap_server_availability_and_rtt('dc1', 389, None, True) is None

    def test_reachable(self):
        """Should return the round trip time and uri"""
        conn = MagicMock()
        conn.start_tls.return_value = True

        with patch.object(discovery_utils, 'Connection', return_value=conn):
            rtt, uri = discovery_utils._check_ldap_server_availability_and_rtt('dc1', 389, None, True)

        assert uri == 'ldap://dc1:389'
        assert rtt >= 0
