# This software is provided 'as-is', without any express or implied
# warranty.  In no event will the author be held liable for any damages
# arising from the use of this software.
#
# Permission is granted to anyone to use this software for any purpose,
# including commercial applications, and to alter it and redistribute it
# freely, subject to the following restrictions:
#
# 1. The origin of this software must not be misrepresented; you must not
#    claim that you wrote the original software. If you use this software
#    in a product, an acknowledgment in the product documentation would be
#    appreciated but is not required.
# 2. Altered source versions must be plainly marked as such, and must not be
#    misrepresented as being the original software.
# 3. This notice may not be removed or altered from any source distribution.
#
# Copyright (c) 2008 Greg Hewgill http://hewgill.com
#
# This has been modified from the original software.
# Copyright (c) 2011 Scott Kitterman <scott@kitterman.com>

__all__ = [
    'ArhParseError',
    'DKIMException',
    'InternalError',
    'SigError',
    ]


class DKIMException(Exception):
    """Base class for DKIM errors."""
    pass


class SigError(DKIMException):
    """Signature or key is invalid or violates a policy.

    Results in a PERMFAIL.  C{error_type} is one of the stable
    C{DKIM_SIGERROR_*} / C{DKIM_POLICYERROR_*} identifiers.
    """

    def __init__(self, error_type, error_str_params=None):
        DKIMException.__init__(self, error_type)
        self.error_type = error_type
        self.error_str_params = list(error_str_params or [])


class InternalError(DKIMException):
    """Infrastructure failure (DNS, message format).  Results in a TEMPFAIL."""

    def __init__(self, message=None, error_type=None):
        DKIMException.__init__(self, message or error_type)
        self.error_type = error_type


class ArhParseError(DKIMException):
    """Authentication-Results header could not be parsed.

    C{authserv_id} is set if the error occurred after the authserv-id was
    parsed.
    """

    def __init__(self, message, authserv_id=None):
        DKIMException.__init__(self, message)
        self.authserv_id = authserv_id
