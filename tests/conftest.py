"""
Pytest configuration and shared fixtures for adauth tests.
"""
import threading
import time
import uuid

import pytest

from adauth.environment.ldap.ldap_attribute_codec import encode_sid


DOMAIN_DN = 'DC=corp,DC=example,DC=com'
DOMAIN_SID = 'S-1-5-21-1-2-3'


def make_entry(dn, sid=None, guid=None, **attributes):
    """Build a search result entry shaped like the ones ldap3 returns."""
    raw_attributes = {}
    if sid:
        raw_attributes['objectSid'] = [encode_sid(sid)]
        attributes['objectSid'] = sid
    if guid:
        raw_attributes['objectGUID'] = [uuid.UUID(guid).bytes_le]
        attributes['objectGUID'] = '{' + guid + '}'
    return {
        'dn': dn,
        'attributes': attributes,
        'raw_attributes': raw_attributes,
        'type': 'searchResEntry',
    }


def make_search_ref(uri):
    """Build a search reference shaped like the ones ldap3 returns."""
    return {'uri': [uri], 'type': 'searchResRef'}


class FakeStrategy:
    """Stands in for an ldap3 strategy"""

    def __init__(self, thread_safe):
        self.thread_safe = thread_safe


class FakeLdapConnection:
    """
    An ldap3 connection that answers searches from an in-memory directory keyed by
    filter (optionally also by base), and records every search it is asked to do.
    """

    def __init__(self, thread_safe=False):
        self.strategy = FakeStrategy(thread_safe)
        self.results = {}
        self.failures = {}
        self.statuses = {}
        self.delays = {}
        self.requests = []
        self.result = None
        self.response = None
        self.request = None
        self.unbind_count = 0
        self._lock = threading.Lock()

    def add_results(self, search_filter, entries, search_base=None):
        self.results[(search_base, search_filter)] = list(entries)

    def fail_search(self, search_filter, exception):
        self.failures[search_filter] = exception

    def delay_search(self, search_filter, seconds):
        self.delays[search_filter] = seconds

    def set_status(self, search_filter, result_code):
        self.statuses[search_filter] = result_code

    def searched_filters(self):
        with self._lock:
            return [request['search_filter'] for request in self.requests]

    def search(self, search_base, search_filter, search_scope, attributes=None):
        request = {
            'search_base': search_base,
            'search_filter': search_filter,
            'search_scope': search_scope,
            'attributes': attributes,
        }
        with self._lock:
            self.requests.append(request)
        if search_filter in self.delays:
            time.sleep(self.delays[search_filter])
        if search_filter in self.failures:
            raise self.failures[search_filter]
        response = self.results.get((search_base, search_filter))
        if response is None:
            response = self.results.get((None, search_filter), [])
        result_code = self.statuses.get(search_filter, 0)
        result = {'result': result_code, 'description': 'success' if result_code == 0 else 'error'}
        if self.strategy.thread_safe:
            return result_code == 0, result, list(response), request
        self.result = result
        self.response = list(response)
        self.request = request
        return result_code == 0

    def unbind(self):
        self.unbind_count += 1
        return True


@pytest.fixture
def fake_connection():
    """A non thread-safe fake connection"""
    return FakeLdapConnection()


@pytest.fixture
def thread_safe_connection():
    """A thread-safe fake connection"""
    return FakeLdapConnection(thread_safe=True)


@pytest.fixture
def ad_config():
    """A config with a fixed server so that no discovery happens"""
    from adauth.core.ad_auth_config import ADAuthConfig
    return ADAuthConfig(DOMAIN_DN, ldap_servers_or_uris=['ldap://dc1.corp.example.com'])
