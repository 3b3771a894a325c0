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

"""Verification results read from Authentication-Results header fields.

If the DKIM results of the header fields replace the own verification, the
same sanity and policy checks as for the own verification are done.
"""

import logging
import re

from dkimverifier.arhparser import ArhParser
from dkimverifier.errors import ArhParseError, SigError
from dkimverifier.prefs import Preferences, apply_policy, make_warning
from dkimverifier.rfcparser import FWS
from dkimverifier.util import (
    addr_is_in_domain,
    domain_is_in_domain,
    get_domain_from_addr,
    )

__all__ = [
    'get_arh_result',
    'get_bimi_indicator',
    'read_arhs',
    ]

log = logging.getLogger(__name__)

#: ARH result keyword -> sort order
RESULT_ORDER = {
    "pass": 0,
    "neutral": 10,
    "declined": 11,
    "policy": 12,
    "hardfail": 20,
    "fail": 21,
    "softfail": 22,
    "permerror": 30,
    "temperror": 31,
    "skipped": 40,
    "none": 41,
    }


def _is_allowed(authserv_id, allowed_authserv):
    for server in allowed_authserv:
        if authserv_id == server:
            return True
        if server.startswith("@") and domain_is_in_domain(authserv_id,
                                                          server[1:]):
            return True
    return False


def read_arhs(ar_headers, prefs):
    """Collect the resinfos of the trusted Authentication-Results headers.

    Without a configured list of authentication service identifiers only
    the authserv-id of the newest header (the first one) is trusted.  If the
    newest header is ill-formed, its authserv-id is still trusted when it
    could be parsed; otherwise no header is trusted.

    @param ar_headers: complete Authentication-Results header fields, newest
    first
    @return: dict of method ("dkim", "spf", "dmarc", "bimi") to resinfos
    """
    result = {'dkim': [], 'spf': [], 'dmarc': [], 'bimi': []}
    allowed_authserv = prefs.arh_allowed_authserv.split()
    trust_newest = not allowed_authserv

    for header in ar_headers:
        try:
            arh = ArhParser.parse(header, prefs.arh_relaxed_parsing)
        except ArhParseError as x:
            log.error("Ignoring error in parsing of ARH: %s" % x)
            if trust_newest:
                allowed_authserv = [x.authserv_id] if x.authserv_id else []
                trust_newest = False
            continue

        if trust_newest:
            allowed_authserv = [arh['authserv_id']]
            trust_newest = False
        if not _is_allowed(arh['authserv_id'], allowed_authserv):
            continue

        for resinfo in arh['resinfo']:
            if resinfo['method'] in result:
                result[resinfo['method']].append(resinfo)
    return result


def arh_dkim_to_result(resinfo):
    """Convert a DKIM resinfo to a dkimSigResultV2."""
    res = {'version': "2.0"}
    arh_result = resinfo['result']
    if arh_result == "none":
        res['result'] = "none"
    elif arh_result == "pass":
        res['result'] = "SUCCESS"
        res['warnings'] = []
    elif arh_result in ("fail", "policy", "neutral", "permerror"):
        res['result'] = "PERMFAIL"
        res['errorType'] = resinfo.get('reason', "")
    elif arh_result == "temperror":
        res['result'] = "TEMPFAIL"
        res['errorType'] = resinfo.get('reason', "")
    else:
        res['result'] = "PERMFAIL"
        res['errorType'] = resinfo.get('reason', arh_result)

    header = resinfo['properties']['header']
    if header.get('d'):
        res['sdid'] = header['d']
    if header.get('i'):
        res['auid'] = header['i']
    if header.get('a'):
        algorithm = header['a'].split("-")
        if algorithm[0]:
            res['algorithmSignature'] = algorithm[0]
        if len(algorithm) > 1 and algorithm[1]:
            res['algorithmHash'] = algorithm[1]
    return res


def _check_sdid_and_auid(res):
    sdid = res.get('sdid')
    auid = res.get('auid')
    if sdid and auid:
        if not domain_is_in_domain(get_domain_from_addr(auid), sdid):
            res['result'] = "PERMFAIL"
            res['errorType'] = "DKIM_SIGERROR_SUBDOMAIN_I"
            res['warnings'] = []
    elif sdid:
        res['auid'] = "@" + sdid
    elif auid:
        res['sdid'] = get_domain_from_addr(auid)


def _check_signature_algorithm(res, prefs):
    if res['result'] != "SUCCESS":
        return
    if res.get('algorithmSignature') == "rsa" and \
            res.get('algorithmHash') == "sha1":
        try:
            apply_policy(prefs.error_algorithm_rsa_sha1_treat_as,
                         "DKIM_SIGERROR_INSECURE_A", res['warnings'])
        except SigError as x:
            res['result'] = "PERMFAIL"
            res['errorType'] = x.error_type
            res['warnings'] = []


def _check_from_alignment(from_, res):
    if res['result'] != "SUCCESS":
        return
    if not addr_is_in_domain(from_, res.get('sdid', "")):
        res['warnings'].append(make_warning("DKIM_SIGWARNING_FROM_NOT_IN_SDID"))


def get_bimi_indicator(header_fields, arh_bimi):
    """Return the BIMI-Indicator of a message with a passing BIMI result.

    @param header_fields: the header of the message
    @param arh_bimi: trusted BIMI resinfos
    @return: the base64 encoded indicator, or None
    """
    if not any(r['result'] == "pass" and
               r['properties']['policy'].get('authority') == "pass"
               for r in arh_bimi):
        return None
    indicators = header_fields.get("bimi-indicator", [])
    if len(indicators) > 1:
        log.warning("Message contains more than one BIMI-Indicator header")
        return None
    if not indicators:
        log.warning("Message contains an ARH with passing BIMI but does not "
                    "have a BIMI-Indicator header")
        return None
    indicator = indicators[0][len("bimi-indicator:"):-len("\r\n")]
    return re.sub(FWS, "", indicator)


def get_arh_result(header_fields, from_, prefs=None):
    """Get the results of the Authentication-Results header fields.

    @param header_fields: the header of the message
    @param from_: address of the From header
    @param prefs: L{Preferences}
    @return: a SavedAuthResult, or None if reading the header is disabled
    or the message has none
    """
    prefs = prefs or Preferences()
    ar_headers = header_fields.get("authentication-results")
    if not ar_headers or not prefs.arh_read:
        return None

    arhs = read_arhs(ar_headers, prefs)
    dkim_results = [arh_dkim_to_result(r) for r in arhs['dkim']]

    if prefs.arh_replace_addon_result:
        for res in dkim_results:
            _check_sdid_and_auid(res)
            _check_signature_algorithm(res, prefs)
            _check_from_alignment(from_, res)
    else:
        for res in dkim_results:
            if not res.get('sdid') and res.get('auid'):
                res['sdid'] = get_domain_from_addr(res['auid'])

    spf = sorted(arhs['spf'],
                 key=lambda r: RESULT_ORDER.get(r['result'].lower(), 99))
    dmarc = sorted(arhs['dmarc'],
                   key=lambda r: RESULT_ORDER.get(r['result'].lower(), 99))
    saved_auth_result = {
        'version': "3.1",
        'dkim': dkim_results,
        'spf': spf,
        'dmarc': dmarc,
    }
    bimi_indicator = get_bimi_indicator(header_fields, arhs['bimi'])
    if bimi_indicator is not None:
        saved_auth_result['bimiIndicator'] = bimi_indicator
    log.debug("ARH result: %r" % saved_auth_result)
    return saved_auth_result
