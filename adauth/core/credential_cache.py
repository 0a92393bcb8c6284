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

""" A bounded, expiring cache of successful authentications """

import base64
import bcrypt
import copy
import hashlib
import threading
import time

from cachetools import TTLCache
from typing import Callable, Optional

from adauth import logging_utils
from adauth.core.ad_objects import ADAuthenticatedUser
from adauth.environment.ldap.ldap_constants import (
    DEFAULT_CACHE_EXPIRY_SECONDS,
    DEFAULT_CACHE_HASH_ROUNDS,
    DEFAULT_CACHE_SIZE,
)


logger = logging_utils.get_logger()


def _prehash_password(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes of its input, so digest first to make every
    # character of long passwords count
    digest = hashlib.sha256(password.encode('utf-8')).digest()
    return base64.b64encode(digest)


class CredentialCache:

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE, expiry_seconds: float = DEFAULT_CACHE_EXPIRY_SECONDS,
                 hash_rounds: int = DEFAULT_CACHE_HASH_ROUNDS, clock: Callable[[], float] = time.monotonic):
        """ Remembers users that recently authenticated successfully, keyed by the login identifier.
        Passwords are never held in plaintext, only as salted bcrypt hashes.
        :param max_size: The most users to hold. When full, the least recently used entry is evicted.
        :param expiry_seconds: How long after being stored an entry stops being returned.
        :param hash_rounds: The bcrypt cost factor for stored password hashes.
        :param clock: A function returning the current time in seconds. Defaults to a monotonic clock.
        """
        self.hash_rounds = hash_rounds
        # TTLCache isn't thread-safe on its own
        self._lock = threading.Lock()
        self._entries = TTLCache(maxsize=max_size, ttl=expiry_seconds, timer=clock)

    def _get_entry(self, identifier: str):
        with self._lock:
            self._entries.expire()
            return self._entries.get(identifier)

    def lookup(self, identifier: str, password: str) -> Optional[ADAuthenticatedUser]:
        """ Return the cached user for an identifier if the password matches the one they last
        authenticated with. A mismatch is a miss, not a failure, and the entry is left alone.
        Every hit is a fresh copy, so callers can't change what later lookups return.
        """
        cached = self._get_entry(identifier)
        if cached is None:
            return None
        password_hash, user = cached
        if not bcrypt.checkpw(_prehash_password(password), password_hash):
            logger.debug('Cached credentials for %s did not match the supplied password', identifier)
            return None
        logger.debug('Using cached authentication result for %s', identifier)
        return copy.deepcopy(user)

    def store(self, identifier: str, password: str, user: ADAuthenticatedUser):
        password_hash = bcrypt.hashpw(_prehash_password(password), bcrypt.gensalt(rounds=self.hash_rounds))
        snapshot = copy.deepcopy(user)
        with self._lock:
            self._entries[identifier] = (password_hash, snapshot)

    def invalidate(self, identifier: str):
        with self._lock:
            self._entries.pop(identifier, None)

    def reset(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            self._entries.expire()
            return len(self._entries)
