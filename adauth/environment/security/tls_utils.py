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

import os
import requests

from ldap3 import Tls
from ssl import (
    OP_NO_SSLv2,
    OP_NO_SSLv3,
    OP_NO_TLSv1,
    OP_NO_TLSv1_1,
    CERT_NONE,
    CERT_REQUIRED,
)
from typing import Optional, Tuple
from urllib.parse import urlparse

from adauth import logging_utils
from adauth.exceptions import ADAuthConfigurationException


logger = logging_utils.get_logger()

CA_CERTIFICATE_FETCH_TIMEOUT_SECONDS = 30
_URL_SCHEMES = ('http', 'https')


def is_web_url(location: str) -> bool:
    parsed = urlparse(location)
    return parsed.scheme.lower() in _URL_SCHEMES and bool(parsed.netloc)


def fetch_ca_certificates_from_url(url: str) -> str:
    """ Download a PEM bundle of CA certificates. Some organizations publish their internal CA chain on
    an intranet site rather than distributing the file.
    """
    logger.info('Fetching CA certificates from %s', url)
    try:
        response = requests.get(url, timeout=CA_CERTIFICATE_FETCH_TIMEOUT_SECONDS)
    except requests.RequestException as ex:
        raise ADAuthConfigurationException('Failure getting CA certificates from {}: {}'.format(url, ex))
    if not response.ok:
        raise ADAuthConfigurationException('Failure getting CA certificates from {}: received response code {}'
                                           .format(url, response.status_code))
    return response.text


def load_ca_certificates(ca_certificates: str) -> Tuple[Optional[str], Optional[str]]:
    """ Given either a path to a file of CA certificates or a URL to fetch them from, figure out what
    to hand to ldap3.
    :returns: A tuple of (CA certificates file path, CA certificates PEM data). At most one is set.
    """
    if not ca_certificates:
        return None, None
    if is_web_url(ca_certificates):
        return None, fetch_ca_certificates_from_url(ca_certificates)
    if not os.path.isfile(ca_certificates):
        raise ADAuthConfigurationException('CA certificates file {} does not exist'.format(ca_certificates))
    return ca_certificates, None


def build_tls_settings(ca_certificates: str = None) -> Tls:
    """ Build the TLS settings for connections to LDAP servers. Only check peer certificates if
    we have CAs, and disable all TLS below 1.2.
    """
    ca_certs_file, ca_certs_data = load_ca_certificates(ca_certificates)
    checking = CERT_REQUIRED if (ca_certs_file or ca_certs_data) else CERT_NONE
    if checking == CERT_NONE:
        logger.warning('No CA certificates were provided, so LDAP server certificates will not be verified')
    return Tls(ca_certs_file=ca_certs_file,
               ca_certs_data=ca_certs_data,
               ssl_options=[OP_NO_SSLv2, OP_NO_SSLv3, OP_NO_TLSv1, OP_NO_TLSv1_1],
               validate=checking)
