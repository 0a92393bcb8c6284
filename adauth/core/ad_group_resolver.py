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

""" Resolution of the effective (transitive) group membership of directory entries """

import threading

# group searches are IO-bound, so we use a thread pool instead of a process pool
from concurrent.futures import ThreadPoolExecutor
from ldap3 import Connection
from typing import List, Optional

import adauth.environment.ldap.ldap_constants as ldap_constants

from adauth import logging_utils
from adauth.core.ad_auth_config import ADAuthConfig
from adauth.core.ad_objects import ADDirectoryEntry
from adauth.core.ad_search import ADSearchGateway
from adauth.exceptions import GroupResolutionException


logger = logging_utils.get_logger()


def construct_primary_group_sid(object_sid: str, primary_group_id: int) -> str:
    """ A primary group shares the domain portion of the member's SID, so swap the member's relative
    ID for the primary group's. e.g. S-1-5-21-1-2-3-500 with 512 gives S-1-5-21-1-2-3-512
    """
    domain_sid = object_sid[:object_sid.rindex(ldap_constants.SID_COMPONENT_SEPARATOR) + 1]
    return '{}{}'.format(domain_sid, primary_group_id)


class GroupResolutionContext:

    def __init__(self):
        """ Tracks the groups found during one resolution, in the order they were first found, along
        with the identity of every group already claimed so that each is only expanded once.
        """
        self._lock = threading.Lock()
        self._groups = []
        self._resolved_keys = set()

    def claim(self, group: ADDirectoryEntry) -> bool:
        """ Record a group as found. Returns False if some branch already claimed it. """
        key = group.get_identity_key()
        with self._lock:
            if key in self._resolved_keys:
                return False
            self._resolved_keys.add(key)
            self._groups.append(group)
            return True

    def get_groups(self) -> List[ADDirectoryEntry]:
        with self._lock:
            return list(self._groups)


class ADGroupResolver:

    def __init__(self, config: ADAuthConfig, search_gateway: ADSearchGateway):
        self.config = config
        self.search_gateway = search_gateway

    def _find_primary_group(self, ldap_connection: Connection, entry: ADDirectoryEntry) -> Optional[ADDirectoryEntry]:
        primary_group_id = entry.primary_group_id
        if primary_group_id is None:
            return None
        if not entry.object_sid:
            logger.debug('Entry %s has a primary group id of %s but no objectSid, so its primary group cannot be '
                         'found', entry.distinguished_name, primary_group_id)
            return None
        primary_group_sid = construct_primary_group_sid(entry.object_sid, primary_group_id)
        sid_filter = ldap_constants.OBJECT_SID_LOOKUP_FILTER_FORMAT.format(attr=ldap_constants.AD_ATTRIBUTE_OBJECT_SID,
                                                                           sid=primary_group_sid)
        matches = self.search_gateway.search(ldap_connection, self.config.primary_group_search_base, sid_filter,
                                             self.config.primary_group_search_scope,
                                             attributes=self.config.group_search_attributes)
        if not matches:
            logger.debug('No primary group with SID %s found for %s', primary_group_sid, entry.distinguished_name)
            return None
        return matches[0]

    def find_direct_groups(self, ldap_connection: Connection, entry: ADDirectoryEntry) -> List[ADDirectoryEntry]:
        """ Find the groups that an entry is directly a member of. Active Directory never lists an entry
        as a member of its primary group, so that is looked up separately by SID and put first. The
        primary group's DN is also added to the front of the entry's memberOf.
        """
        group_filter = self.config.group_filter.build_filter(entry)
        direct_groups = self.search_gateway.search(ldap_connection, self.config.group_search_base, group_filter,
                                                   self.config.group_search_scope,
                                                   attributes=self.config.group_search_attributes)
        primary_group = self._find_primary_group(ldap_connection, entry)
        if primary_group is not None:
            direct_groups = [primary_group] + direct_groups
            entry.prepend_member_of(primary_group.distinguished_name)
        return direct_groups

    def _find_direct_groups_for_level(self, ldap_connection: Connection,
                                      level: List[ADDirectoryEntry]) -> List[List[ADDirectoryEntry]]:
        """ Search for the direct groups of every entry in one level of the walk. The results line up
        with the entries of the level, however the searches were scheduled.
        """
        if len(level) == 1 or self.config.group_search_max_workers == 1 \
                or not ldap_connection.strategy.thread_safe:
            return [self.find_direct_groups(ldap_connection, entry) for entry in level]

        max_workers = min(len(level), self.config.group_search_max_workers)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            # map yields results in submission order and re-raises the first failure from any branch
            return list(executor.map(lambda entry: self.find_direct_groups(ldap_connection, entry), level))

    def _resolve_groups_for_entry(self, ldap_connection: Connection, entry: ADDirectoryEntry,
                                  context: GroupResolutionContext):
        level = [entry]
        while level:
            next_level = []
            # claims only happen here, after a whole level's searches are in, so the result order
            # doesn't depend on which search finished first
            for direct_groups in self._find_direct_groups_for_level(ldap_connection, level):
                next_level.extend(group for group in direct_groups if context.claim(group))
            level = next_level

    def resolve_groups(self, ldap_connection: Connection, entry: ADDirectoryEntry) -> List[ADDirectoryEntry]:
        """ Find every group an entry is a member of, directly or through nesting, including primary
        groups. Each group appears once, no matter how many paths lead to it, and membership cycles
        are tolerated.
        :param ldap_connection: A bound connection to search with.
        :param entry: The user (or other entry) to resolve groups for.
        :returns: The groups, in the order they were first found.
        :raises: GroupResolutionException if the entry is missing or any group search fails.
        """
        if entry is None:
            raise GroupResolutionException('An entry must be provided in order to resolve its groups')
        context = GroupResolutionContext()
        try:
            self._resolve_groups_for_entry(ldap_connection, entry, context)
        except Exception as ex:
            raise GroupResolutionException('Failed to resolve groups for {}: {}'
                                           .format(entry.distinguished_name, ex), original_exception=ex) from ex
        groups = context.get_groups()
        logger.debug('Resolved %s groups for %s', len(groups), entry.distinguished_name)
        return groups
