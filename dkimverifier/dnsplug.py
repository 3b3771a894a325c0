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

"""Asynchronous TXT lookups.

A resolver is any object with a coroutine C{txt(name)} returning a dict::

    {"data": [str, ...] or None, "rcode": int, "secure": bool, "bogus": bool}

C{secure} is true if the answer was validated with DNSSEC, C{bogus} if the
validation failed.
"""

import asyncio
import logging

import aiodns
import dns.asyncresolver
import dns.exception
import dns.flags
import dns.resolver

from dkimverifier.errors import InternalError

__all__ = [
    'AiodnsResolver',
    'DnsPythonResolver',
    'RCODE',
    'get_resolver',
    'txt_result',
    ]

log = logging.getLogger(__name__)


class RCODE:
    """DNS response codes (RFC 1035)."""
    NoError = 0
    FormErr = 1
    ServFail = 2
    NXDomain = 3
    NotImp = 4
    Refused = 5


# c-ares status codes reported by aiodns.error.DNSError
_ARES_RCODES = {
    1: RCODE.NoError,   # ARES_ENODATA
    2: RCODE.FormErr,   # ARES_EFORMERR
    3: RCODE.ServFail,  # ARES_ESERVFAIL
    4: RCODE.NXDomain,  # ARES_ENOTFOUND
    5: RCODE.NotImp,    # ARES_ENOTIMP
    6: RCODE.Refused,   # ARES_EREFUSED
    }


def txt_result(data, rcode=RCODE.NoError, secure=False, bogus=False):
    return {
        'data': data,
        'rcode': rcode,
        'secure': secure,
        'bogus': bogus,
    }


def _decode(text):
    if isinstance(text, bytes):
        return text.decode('latin-1')
    return text


class AiodnsResolver(object):
    """TXT lookups with aiodns.  Answers are never reported as secure."""

    def __init__(self, nameserver=None, timeout=5):
        self.nameserver = nameserver
        self.timeout = timeout
        self._resolver = None

    def _get_resolver(self):
        # Note: This will use the running loop
        if self._resolver is None:
            kwargs = {'loop': asyncio.get_event_loop(),
                      'timeout': self.timeout}
            if self.nameserver:
                kwargs['nameservers'] = [self.nameserver]
            self._resolver = aiodns.DNSResolver(**kwargs)
        return self._resolver

    async def txt(self, name):
        log.debug("TXT query for %s" % name)
        try:
            result = await self._get_resolver().query(name, 'TXT')
        except aiodns.error.DNSError as x:
            code = x.args[0] if x.args else None
            if code in _ARES_RCODES:
                return txt_result(None, _ARES_RCODES[code])
            raise InternalError(str(x), "DKIM_DNSERROR_SERVER_ERROR")
        if not result:
            return txt_result(None)
        return txt_result([_decode(r.text) for r in result])


class DnsPythonResolver(object):
    """TXT lookups with dnspython.

    The AD flag of the answer is reported as C{secure}, so this is only
    meaningful with a validating recursive resolver.
    """

    def __init__(self, nameserver=None, timeout=5):
        self.resolver = dns.asyncresolver.Resolver()
        if nameserver:
            self.resolver.nameservers = [nameserver]
        self.resolver.lifetime = timeout
        self.resolver.timeout = timeout
        # ask for the AD bit
        self.resolver.flags = dns.flags.RD | dns.flags.AD
        self.resolver.use_edns(0, dns.flags.DO, 1232)

    async def txt(self, name):
        log.debug("TXT query for %s" % name)
        try:
            answer = await self.resolver.resolve(
                name, 'TXT', raise_on_no_answer=False)
        except dns.resolver.NXDOMAIN:
            return txt_result(None, RCODE.NXDomain)
        except dns.resolver.NoNameservers:
            return txt_result(None, RCODE.ServFail)
        except dns.exception.DNSException as x:
            raise InternalError(str(x), "DKIM_DNSERROR_SERVER_ERROR")

        secure = bool(answer.response.flags & dns.flags.AD)
        if answer.rrset is None:
            return txt_result(None, secure=secure)
        data = [b"".join(r.strings).decode('latin-1') for r in answer.rrset]
        return txt_result(data, secure=secure)


def get_resolver(prefs):
    """Create the resolver selected by the preferences."""
    nameserver = prefs.dns_nameserver or None
    if prefs.dns_resolver == "aiodns":
        return AiodnsResolver(nameserver, prefs.dns_timeout)
    elif prefs.dns_resolver == "dnspython":
        return DnsPythonResolver(nameserver, prefs.dns_timeout)
    raise ValueError("unknown DNS resolver %s" % prefs.dns_resolver)
