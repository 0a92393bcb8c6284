"""
Tests for TLS settings and CA certificate loading.
"""
import ssl
from unittest.mock import MagicMock, patch

import pytest
import requests

from adauth.environment.security.tls_utils import (
    build_tls_settings,
    fetch_ca_certificates_from_url,
    is_web_url,
    load_ca_certificates,
)
from adauth.exceptions import ADAuthConfigurationException


PEM = '-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n'


class TestIsWebUrl:
    """Tests for is_web_url"""

    def test_http_and_https(self):
        """Should recognize http and https urls"""
        assert is_web_url('https://pki.corp.example.com/ca.pem')
        assert is_web_url('http://pki.corp.example.com/ca.pem')

    def test_file_paths(self):
        """Should not treat file paths as urls"""
        assert not is_web_url('/etc/ssl/ca.pem')
        assert not is_web_url('C:\\certs\\ca.pem')


class TestFetchCaCertificates:
    """Tests for fetch_ca_certificates_from_url"""

    def test_returns_body(self):
        """Should return the downloaded PEM data"""
        response = MagicMock(ok=True, text=PEM)

        with patch('adauth.environment.security.tls_utils.requests.get', return_value=response) as mock_get:
            assert fetch_ca_certificates_from_url('https://pki/ca.pem') == PEM

        mock_get.assert_called_once_with('https://pki/ca.pem', timeout=30)

    def test_error_status(self):
        """Should raise a configuration error for error responses"""
        response = MagicMock(ok=False, status_code=404)

        with patch('adauth.environment.security.tls_utils.requests.get', return_value=response):
            with pytest.raises(ADAuthConfigurationException):
                fetch_ca_certificates_from_url('https://pki/ca.pem')

    def test_connection_error(self):
        """Should raise a configuration error when the url can't be reached"""
        with patch('adauth.environment.security.tls_utils.requests.get',
                   side_effect=requests.ConnectionError('refused')):
            with pytest.raises(ADAuthConfigurationException):
                fetch_ca_certificates_from_url('https://pki/ca.pem')


class TestLoadCaCertificates:
    """Tests for load_ca_certificates"""

    def test_nothing(self):
        """Should return nothing when no CAs are configured"""
        assert load_ca_certificates(None) == (None, None)

    def test_file(self, tmp_path):
        """Should pass file paths through"""
        ca_file = tmp_path / 'ca.pem'
        ca_file.write_text(PEM)

        assert load_ca_certificates(str(ca_file)) == (str(ca_file), None)

    def test_missing_file(self, tmp_path):
        """Should fail for files that don't exist"""
        with pytest.raises(ADAuthConfigurationException):
            load_ca_certificates(str(tmp_path / 'missing.pem'))

    def test_url(self):
        """Should download CAs from urls"""
        with patch('adauth.environment.security.tls_utils.fetch_ca_certificates_from_url', return_value=PEM):
            assert load_ca_certificates('https://pki/ca.pem') == (None, PEM)


class TestBuildTlsSettings:
    """Tests for build_tls_settings"""

    def test_no_verification_without_cas(self):
        """Should not verify peers when there are no CAs"""
        tls = build_tls_settings(None)

        assert tls.validate == ssl.CERT_NONE

    def test_verification_with_cas(self, tmp_path):
        """Should require valid peer certificates when CAs are given"""
        ca_file = tmp_path / 'ca.pem'
        ca_file.write_text(PEM)

        tls = build_tls_settings(str(ca_file))

        assert tls.validate == ssl.CERT_REQUIRED
        assert tls.ca_certs_file == str(ca_file)

    def test_disables_old_protocols(self):
        """Should disable everything below TLS 1.2"""
        tls = build_tls_settings(None)

        for option in (ssl.OP_NO_SSLv2, ssl.OP_NO_SSLv3, ssl.OP_NO_TLSv1, ssl.OP_NO_TLSv1_1):
            assert option in tls.ssl_options
