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

""" A thin layer over raw ldap3 searches that decodes binary identity attributes and materializes results """

from ldap3 import ALL_ATTRIBUTES, Connection
from ldap3.core.exceptions import LDAPException
from typing import List

import adauth.environment.ldap.ldap_constants as ldap_constants
import adauth.environment.ldap.ldap_format_utils as ldap_utils

from adauth import logging_utils
from adauth.core.ad_objects import ADDirectoryEntry
from adauth.environment.ldap.ldap_attribute_codec import decode_guid, decode_sid
from adauth.exceptions import DirectoryTransportException, DomainSearchException


logger = logging_utils.get_logger()


def _get_raw_value(raw_attributes: dict, attribute_name: str):
    """ Binary attributes come back from ldap3 as a list of byte strings. Identity attributes are
    single valued, so take the first value if there is one.
    """
    if not raw_attributes:
        return None
    return ldap_utils.unpack_single_value(raw_attributes.get(attribute_name))


class ADSearchGateway:

    def __init__(self, include_raw: bool = False):
        """ Create a search gateway.
        :param include_raw: If true, every returned entry keeps the verbatim map of raw binary
                            attribute values returned by the server. Useful when callers need to
                            handle binary attributes other than objectSid and objectGUID.
                            Defaults to False.
        """
        self.include_raw = include_raw

    def _figure_out_search_attributes(self, attributes: List[str]):
        """ We always need the identity attributes in order to decode them and to tell entries apart,
        so add them to any allowlist a caller specifies. No allowlist means all attributes.
        """
        if attributes is None:
            return None
        base_attrs = set(ldap_constants.BINARY_IDENTITY_ATTRIBUTES)
        base_attrs.update(set(attributes))
        # sort for reproducibility in testing
        return sorted(list(base_attrs))

    def _convert_entry(self, entry: dict, return_type):
        raw_attributes = entry.get('raw_attributes')
        raw_sid = _get_raw_value(raw_attributes, ldap_constants.AD_ATTRIBUTE_OBJECT_SID)
        raw_guid = _get_raw_value(raw_attributes, ldap_constants.AD_ATTRIBUTE_OBJECT_GUID)
        object_sid = decode_sid(raw_sid) if raw_sid else None
        object_guid = decode_guid(raw_guid) if raw_guid else None
        kept_raw = dict(raw_attributes) if (self.include_raw and raw_attributes is not None) else None
        return return_type(entry['dn'], entry.get('attributes'), object_sid=object_sid, object_guid=object_guid,
                           raw_attributes=kept_raw)

    def search(self, ldap_connection: Connection, search_base: str, search_filter: str, search_scope: str,
               attributes: List[str] = None, return_type=None) -> List[ADDirectoryEntry]:
        """ Perform a single search and return every entry found once the search is complete.

        :param ldap_connection: The ldap3 connection to search with. It should already be bound.
        :param search_base: The distinguished name to search beneath.
        :param search_filter: The complete, already escaped, LDAP filter.
        :param search_scope: The ldap3 search scope (BASE, LEVEL, or SUBTREE).
        :param attributes: An optional list of attributes to read. objectSid and objectGUID will always
                           be read. If not specified, all attributes are read.
        :param return_type: The class to use to represent entries. Defaults to ADDirectoryEntry.
        :returns: A list of entries, with their objectSid and objectGUID decoded.
        :raises: DirectoryTransportException if the search could not be performed.
        :raises: DomainSearchException if the server returned a non-success result.
        """
        if return_type is None:
            return_type = ADDirectoryEntry
        attrs = self._figure_out_search_attributes(attributes)
        logger.debug('Searching %s with scope %s using filter %s', search_base, search_scope, search_filter)
        try:
            res = ldap_connection.search(search_base=search_base,
                                         search_filter=search_filter,
                                         search_scope=search_scope,
                                         attributes=attrs if attrs is not None else ALL_ATTRIBUTES)
            _, result, resp, _ = ldap_utils.process_ldap3_conn_return_value(ldap_connection, res)
        except LDAPException as ex:
            raise DirectoryTransportException('Failed to search {} with filter {} due to an error communicating '
                                              'with the directory: {}'.format(search_base, search_filter, ex))

        result_code = result['result'] if result else None
        if result_code != ldap_constants.OP_SUCCESS:
            raise DomainSearchException('Non-zero status from LDAP search of {} with filter {}: {}. Raw result: {}'
                                        .format(search_base, search_filter, result_code, result),
                                        result_code=result_code, result=result)

        entries = [self._convert_entry(entry, return_type) for entry in ldap_utils.remove_ad_search_refs(resp)]
        logger.debug('%s entries found searching %s using filter %s', len(entries), search_base, search_filter)
        return entries
