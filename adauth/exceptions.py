""" Exceptions used within the library """
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


class ADAuthException(Exception):
    """ A parent class for all other exceptions so that users can have a catch-all exception for
    functional issues that still doesn't blind them to things like accidentally providing a string
    where a number is needed.
    """
    def __init__(self, exception_str):
        self.message = exception_str
        super().__init__(self.message)


class ADAuthConfigurationException(ADAuthException):
    """ An exception raised when a required option is missing or an option has an invalid value
    when constructing an authenticator.
    """
    def __init__(self, exception_str):
        super().__init__(exception_str)


class AmbiguousIdentityException(ADAuthException):
    """ An exception raised when a login identifier matches more than one record in the directory,
    which usually means the user search filters are misconfigured.
    """
    def __init__(self, exception_str, match_count: int = None, identifier: str = None):
        super().__init__(exception_str)
        self.match_count = match_count
        self.identifier = identifier


class AuthenticatorClosedException(ADAuthException):
    """ An exception raised when an authenticator is used after it has been closed """
    def __init__(self, exception_str):
        super().__init__(exception_str)


class DirectoryTransportException(ADAuthException):
    """ An exception raised when connecting to, binding to, or searching the directory fails before
    the server returns a result.
    """
    def __init__(self, exception_str):
        super().__init__(exception_str)


class BindFailedException(DirectoryTransportException):
    """ An exception raised when the directory rejects a bind with the supplied credentials """
    def __init__(self, exception_str, result_code: int = None):
        super().__init__(exception_str)
        self.result_code = result_code


class DomainSearchException(ADAuthException):
    """ An exception raised when a search completes with a non-success status from the server """
    def __init__(self, exception_str, result_code: int = None, result: dict = None):
        super().__init__(exception_str)
        self.result_code = result_code
        self.result = result


class GroupResolutionException(ADAuthException):
    """ An exception raised when effective group membership cannot be resolved. No partial group
    list is ever returned alongside it.
    """
    def __init__(self, exception_str, original_exception: Exception = None):
        super().__init__(exception_str)
        self.original_exception = original_exception


class InvalidIdentifierException(ADAuthException):
    """ An exception raised when a login identifier is empty or otherwise unusable """
    def __init__(self, exception_str):
        super().__init__(exception_str)


class InvalidLdapParameterException(ADAuthException):
    """ An exception raised when a parameter specified is not of a proper type or format to
    convert to an LDAP attribute as needed for a function.
    """
    def __init__(self, exception_str):
        super().__init__(exception_str)


class MissingCredentialException(ADAuthException):
    """ An exception raised when no password is supplied for authentication. Some directory servers
    treat a bind with an empty password as an unauthenticated bind that succeeds, so we never try.
    """
    def __init__(self, exception_str):
        super().__init__(exception_str)


class NoSuchUserException(ADAuthException):
    """ An exception raised when a bind succeeds but no user record matches the login identifier """
    def __init__(self, exception_str, identifier: str = None):
        super().__init__(exception_str)
        self.identifier = identifier


class UnknownDomainException(ADAuthException):
    """ An exception raised when the netbios domain name in a down-level logon name does not match
    the domain being authenticated against.
    """
    def __init__(self, exception_str, netbios_name: str = None):
        super().__init__(exception_str)
        self.netbios_name = netbios_name
