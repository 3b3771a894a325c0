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

"""Use of the DMARC policy (RFC 7489) of the sender domain to decide if a
message should be DKIM signed."""

import logging

from dkimverifier.dnsplug import RCODE
from dkimverifier.errors import DKIMException, InternalError
from dkimverifier.prefs import Preferences
from dkimverifier.rfcparser import (
    DUPLICATE,
    ILL_FORMED,
    parse_tag_value,
    parse_tag_value_list,
    )
from dkimverifier.util import get_base_domain_from_addr, get_domain_from_addr

__all__ = [
    'DMARC',
    'parse_dmarc_record',
    ]

log = logging.getLogger(__name__)

_POLICY = r"(?:none|quarantine|reject)"


def parse_dmarc_record(record):
    """Parse a DMARC record.

    >>> r = parse_dmarc_record("v=DMARC1; p=reject; sp=none; pct=50")
    >>> r['p'], r['sp'], r['pct'], r['adkim']
    ('reject', 'none', 50, 'r')

    @return: dict with the tags v, adkim, p, pct and sp
    @raise InternalError: the record is ill-formed
    """
    tags = parse_tag_value_list(record)
    if tags == ILL_FORMED:
        raise InternalError(None, "DKIM_DMARCERROR_ILLFORMED_TAGSPEC")
    elif tags == DUPLICATE:
        raise InternalError(None, "DKIM_DMARCERROR_DUPLICATE_TAG")

    if parse_tag_value(tags, "v", "DMARC1", 3) is None:
        raise InternalError(None, "DKIM_DMARCERROR_MISSING_V")

    adkim = parse_tag_value(tags, "adkim", "[rs]", 3)

    p = parse_tag_value(tags, "p", _POLICY, 3)
    if p is None:
        raise InternalError(None, "DKIM_DMARCERROR_MISSING_P")

    pct = parse_tag_value(tags, "pct", "[0-9]{1,3}", 3)
    if pct is None:
        pct = 100
    else:
        pct = int(pct.group(0))
        if pct > 100:
            raise InternalError(None, "DKIM_DMARCERROR_INVALID_PCT")

    sp = parse_tag_value(tags, "sp", _POLICY, 3)

    return {
        'v': "DMARC1",
        'adkim': adkim.group(0) if adkim is not None else "r",
        'p': p.group(0),
        'pct': pct,
        'sp': sp.group(0) if sp is not None else None,
    }


class DMARC(object):
    """DMARC policy lookup.

    @param query_txt: coroutine function returning a TXT result dict (see
    L{dkimverifier.dnsplug})
    @param prefs: L{Preferences}
    """

    def __init__(self, query_txt, prefs=None):
        self.query_txt = query_txt
        self.prefs = prefs or Preferences()

    async def should_be_signed(self, from_):
        """Decide from the DMARC policy if the message should be signed.

        Errors while getting the policy are logged and ignored.

        @param from_: address of the From header
        @return: dict with "shouldBeSigned" and "sdid" (list of allowed
        SDIDs)
        """
        res = {
            'shouldBeSigned': False,
            'sdid': [],
        }
        try:
            policy = await self.get_policy(from_)
        except DKIMException as x:
            log.error("Ignored error on getting the DMARC policy: %s" % x)
            return res

        needed = self.prefs.policy_dmarc_should_be_signed_needed_policy
        if policy is not None and (
                needed == "none" or
                (needed == "quarantine" and policy['p'] != "none") or
                (needed == "reject" and policy['p'] == "reject")):
            res['shouldBeSigned'] = True
            if policy['source'] == policy['domain']:
                res['sdid'] = [policy['domain']]
            else:
                res['sdid'] = [policy['domain'], policy['source']]
        return res

    async def get_policy(self, from_):
        """Get the DMARC policy of the From domain (RFC 7489 section 6.6.3).

        @return: dict with adkim, pct, p, domain and source (the domain
        the record was found at), or None if there is no policy
        """
        domain = get_domain_from_addr(from_)
        base_domain = None
        record = await self._get_record(domain)

        if record is None:
            # the organizational domain
            base_domain = get_base_domain_from_addr(from_)
            if domain != base_domain:
                record = await self._get_record(base_domain)
                if record is not None:
                    record['p'] = record['sp'] or record['p']

        if record is None:
            return None
        policy = {
            'adkim': record['adkim'],
            'pct': record['pct'],
            'p': record['p'],
            'domain': domain,
            'source': base_domain or domain,
        }
        log.debug("DMARC policy: %r" % policy)
        return policy

    async def _get_record(self, domain):
        res = await self.query_txt("_dmarc.%s" % domain)
        if res.get('bogus'):
            raise InternalError(None, "DKIM_DNSERROR_DNSSEC_BOGUS")
        if res['rcode'] not in (RCODE.NoError, RCODE.NXDomain):
            raise InternalError("rcode: %s" % res['rcode'],
                                "DKIM_DNSERROR_SERVER_ERROR")
        if not res['data']:
            return None
        try:
            return parse_dmarc_record(res['data'][0])
        except InternalError as x:
            log.error("Ignored error in parsing of DMARC record: %s" % (
                x.error_type or x))
            return None
