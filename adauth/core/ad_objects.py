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

import copy

from ldap3.utils.ciDict import CaseInsensitiveDict
from typing import List, Optional

from adauth.environment.ldap.ldap_constants import (
    AD_ATTRIBUTE_COMMON_NAME,
    AD_ATTRIBUTE_MEMBER_OF,
    AD_ATTRIBUTE_OBJECT_GUID,
    AD_ATTRIBUTE_OBJECT_SID,
    AD_ATTRIBUTE_PRIMARY_GROUP_ID,
    AD_ATTRIBUTE_SAMACCOUNT_NAME,
    DN_PROPERTY,
    GROUPS_KEY,
    RAW_ATTRIBUTES_KEY,
)
from adauth.environment.ldap.ldap_format_utils import (
    convert_to_ldap_iterable,
    unpack_single_value,
)


class ADDirectoryEntry:

    def __init__(self, dn: str, attributes: dict, object_sid: str = None, object_guid: str = None,
                 raw_attributes: dict = None):
        """ A single record returned from a directory search.
        :param dn: The distinguished name of the record.
        :param attributes: The non-binary attributes returned by the server.
        :param object_sid: The decoded string form of the record's objectSid, if it was returned.
        :param object_guid: The decoded string form of the record's objectGUID, if it was returned.
        :param raw_attributes: The raw binary attribute values, only kept if requested.
        """
        self.distinguished_name = dn
        self.object_sid = object_sid
        self.object_guid = object_guid
        self.raw_attributes = raw_attributes
        # attribute names are case insensitive in LDAP
        self.all_attributes = CaseInsensitiveDict(attributes if attributes else {})
        # the binary forms have been decoded into dedicated fields, so don't keep them around
        for binary_attr in (AD_ATTRIBUTE_OBJECT_SID, AD_ATTRIBUTE_OBJECT_GUID):
            if binary_attr in self.all_attributes:
                del self.all_attributes[binary_attr]
        # memberOf might come back as a bare string if the server schema says so, or be missing
        # entirely. normalize it to a list
        if AD_ATTRIBUTE_MEMBER_OF in self.all_attributes:
            self.all_attributes[AD_ATTRIBUTE_MEMBER_OF] = convert_to_ldap_iterable(
                self.all_attributes[AD_ATTRIBUTE_MEMBER_OF])
        # used for __repr__
        self.class_name = 'ADDirectoryEntry'

    @property
    def primary_group_id(self) -> Optional[int]:
        """ The relative ID of the entry's primary group. Only users and computers have one. """
        value = unpack_single_value(self.all_attributes.get(AD_ATTRIBUTE_PRIMARY_GROUP_ID))
        if value is None or value == '':
            return None
        return int(value)

    @property
    def member_of(self) -> List[str]:
        """ The distinguished names of the groups this entry is a member of """
        return list(self.all_attributes.get(AD_ATTRIBUTE_MEMBER_OF, []))

    @property
    def name(self) -> Optional[str]:
        samaccount_name = self.get(AD_ATTRIBUTE_SAMACCOUNT_NAME, unpack_one_item_lists=True)
        if samaccount_name:
            return samaccount_name
        return self.get(AD_ATTRIBUTE_COMMON_NAME, unpack_one_item_lists=True)

    def prepend_member_of(self, group_dn: str):
        """ Add a group to the front of our memberOf list. This is used for primary groups, which
        AD never includes in memberOf.
        """
        self.all_attributes[AD_ATTRIBUTE_MEMBER_OF] = [group_dn] + self.member_of

    def get(self, attribute_name: str, unpack_one_item_lists=False):
        """ Get an attribute about the entry that isn't explicitly tracked as a member """
        val = self.all_attributes.get(attribute_name)
        # there's a lot of 1-item lists from the ldap3 library
        if isinstance(val, list) and len(val) == 1 and unpack_one_item_lists:
            return copy.deepcopy(val[0])
        return copy.deepcopy(val)

    def get_property(self, property_name: str):
        """ Get a property of the entry by name for use in filters. The distinguished name and the
        decoded identity attributes are resolved to our own fields, everything else is read from
        the attributes with single item lists unpacked.
        """
        lowered = property_name.lower()
        if lowered == DN_PROPERTY:
            return self.distinguished_name
        if lowered == AD_ATTRIBUTE_OBJECT_SID.lower():
            return self.object_sid
        if lowered == AD_ATTRIBUTE_OBJECT_GUID.lower():
            return self.object_guid
        return self.get(property_name, unpack_one_item_lists=True)

    def get_identity_key(self) -> str:
        """ The key used to tell whether two entries from different searches are the same object.
        SIDs are preferred, since distinguished names can be spelled in different cases.
        """
        if self.object_sid:
            return self.object_sid
        return self.distinguished_name.lower()

    def to_dict(self) -> dict:
        """ Flatten the entry into a plain dictionary """
        flattened = {DN_PROPERTY: self.distinguished_name}
        flattened.update(copy.deepcopy(dict(self.all_attributes)))
        flattened[AD_ATTRIBUTE_OBJECT_SID] = self.object_sid
        flattened[AD_ATTRIBUTE_OBJECT_GUID] = self.object_guid
        if self.raw_attributes is not None:
            flattened[RAW_ATTRIBUTES_KEY] = copy.deepcopy(self.raw_attributes)
        return flattened

    def __eq__(self, other):
        if not isinstance(other, ADDirectoryEntry):
            return NotImplemented
        return (self.distinguished_name == other.distinguished_name and self.object_sid == other.object_sid
                and self.object_guid == other.object_guid and dict(self.all_attributes) == dict(other.all_attributes))

    def __hash__(self):
        return hash(self.get_identity_key())

    def __repr__(self):
        attrs = dict(self.all_attributes).__repr__() if self.all_attributes else 'None'
        return ('{type}(dn={dn}, object_sid={sid}, object_guid={guid}, attributes={attrs})'
                .format(type=self.class_name, dn=self.distinguished_name, sid=self.object_sid,
                        guid=self.object_guid, attrs=attrs))

    def __str__(self):
        return self.__repr__()


class ADAuthenticatedUser(ADDirectoryEntry):

    def __init__(self, dn: str, attributes: dict, object_sid: str = None, object_guid: str = None,
                 raw_attributes: dict = None, groups: List[ADDirectoryEntry] = None):
        super().__init__(dn, attributes, object_sid, object_guid, raw_attributes)
        # used for __repr__
        self.class_name = 'ADAuthenticatedUser'
        self.groups = groups if groups else []

    @classmethod
    def from_entry(cls, entry: ADDirectoryEntry, groups: List[ADDirectoryEntry]) -> 'ADAuthenticatedUser':
        """ Merge a user entry with its effective groups """
        # copy the attributes so that the entry we were given can't be changed through us
        return cls(entry.distinguished_name, copy.deepcopy(dict(entry.all_attributes)), entry.object_sid,
                   entry.object_guid, copy.deepcopy(entry.raw_attributes), list(groups))

    def get_group_names(self) -> List[str]:
        return [group.name for group in self.groups]

    def is_member_of(self, group_name_or_dn: str) -> bool:
        """ Returns true if the user is an effective member of the group, checking by name,
        distinguished name, or SID. The check is case insensitive.
        """
        to_check = group_name_or_dn.lower()
        for group in self.groups:
            candidates = [group.distinguished_name, group.name, group.object_sid]
            if to_check in [candidate.lower() for candidate in candidates if candidate]:
                return True
        return False

    def to_dict(self) -> dict:
        flattened = super().to_dict()
        flattened[GROUPS_KEY] = [group.to_dict() for group in self.groups]
        return flattened
