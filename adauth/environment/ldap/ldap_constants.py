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

from ldap3 import BASE, LEVEL, SUBTREE

# keys for common active directory attributes
AD_ATTRIBUTE_SAMACCOUNT_NAME = 'sAMAccountName'
AD_ATTRIBUTE_DISTINGUISHED_NAME = 'distinguishedName'
AD_ATTRIBUTE_COMMON_NAME = 'cn'
AD_ATTRIBUTE_OBJECT_SID = 'objectSid'
AD_ATTRIBUTE_OBJECT_GUID = 'objectGUID'
AD_ATTRIBUTE_PRIMARY_GROUP_ID = 'primaryGroupID'
# the principal name of the domain object itself is its netbios name followed by a backslash, e.g. 'CORP\'
AD_ATTRIBUTE_PRINCIPAL_NAME = 'msDS-PrincipalName'
# memberOf is a virtual attribute on users and groups, listing the DNs of groups that the record
# belongs to. it never includes the primary group
AD_ATTRIBUTE_MEMBER_OF = 'memberOf'

# pseudo-property naming the distinguished name of a search result rather than an attribute
DN_PROPERTY = 'dn'
# key used when flattening an entry to expose its raw binary attributes
RAW_ATTRIBUTES_KEY = '_raw'
GROUPS_KEY = 'groups'

# binary attributes that we always decode before handing results to anything else
BINARY_IDENTITY_ATTRIBUTES = [AD_ATTRIBUTE_OBJECT_GUID, AD_ATTRIBUTE_OBJECT_SID]

# placeholders that get replaced in filter templates. every occurrence is replaced
FILTER_PLACEHOLDER_DN = '{{dn}}'
FILTER_PLACEHOLDER_UPN = '{{upn}}'
FILTER_PLACEHOLDER_USERNAME = '{{username}}'

DEFAULT_SEARCH_FILTER_BY_DN = '(&(objectCategory=user)(objectClass=user)(distinguishedName={{dn}}))'
DEFAULT_SEARCH_FILTER_BY_UPN = '(&(objectCategory=user)(objectClass=user)(userPrincipalName={{upn}}))'
DEFAULT_SEARCH_FILTER_BY_SAM = '(&(objectCategory=user)(objectClass=user)(samAccountName={{username}}))'
DEFAULT_GROUP_SEARCH_FILTER = '(&(objectCategory=group)(objectClass=group)(member={{dn}}))'

DOMAIN_LOOKUP_FILTER_FORMAT = '({attr}={domain_dn})'
OBJECT_SID_LOOKUP_FILTER_FORMAT = '({attr}={sid})'

# characters that separate the pieces of login identifiers
DOWN_LEVEL_LOGON_NAME_SEPARATOR = '\\'
USER_PRINCIPAL_NAME_SEPARATOR = '@'
SID_COMPONENT_SEPARATOR = '-'

# short scope names used by other LDAP clients are accepted alongside the ldap3 constants
SEARCH_SCOPE_ALIASES = {
    'base': BASE,
    'one': LEVEL,
    'onelevel': LEVEL,
    'level': LEVEL,
    'sub': SUBTREE,
    'subtree': SUBTREE,
}

# defaults for the credential cache
DEFAULT_CACHE_SIZE = 100
DEFAULT_CACHE_EXPIRY_SECONDS = 300
DEFAULT_CACHE_HASH_ROUNDS = 12

DEFAULT_GROUP_SEARCH_MAX_WORKERS = 8

# LDAP result codes
OP_SUCCESS = 0
