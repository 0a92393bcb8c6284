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

from adauth.core.ad_auth_config import (
    ADAuthConfig,
    ComputedGroupFilter,
    GroupFilter,
    TemplateGroupFilter,
)

from adauth.core.ad_authenticator import (
    ADAuthenticator,
)

from adauth.core.ad_group_resolver import (
    ADGroupResolver,
    GroupResolutionContext,
)

from adauth.core.ad_objects import (
    ADAuthenticatedUser,
    ADDirectoryEntry,
)

from adauth.core.ad_search import (
    ADSearchGateway,
)

from adauth.core.ad_user_resolver import (
    ADUserResolver,
)

from adauth.core.credential_cache import (
    CredentialCache,
)

from adauth.environment.ldap.ldap_attribute_codec import (
    decode_guid,
    decode_sid,
    encode_sid,
)
from adauth.environment.ldap.ldap_format_utils import (
    escape_dn_for_filter,
    escape_filter_string,
)

from adauth.environment.ldap.ldap_constants import *

from adauth.exceptions import *
from adauth.logging_utils import configure_log_level, get_logger
