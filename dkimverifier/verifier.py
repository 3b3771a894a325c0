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

"""Verification of the DKIM signatures of a message (RFC 6376)."""

import functools
import re
import time

from dkimverifier import canonicalization, crypto
from dkimverifier.errors import InternalError, SigError
from dkimverifier.msgparser import (
    parse_from_header,
    parse_list_id_header,
    parse_msg,
    parse_received_time,
    )
from dkimverifier.policy import check_headers_signed, check_sdid
from dkimverifier.prefs import Preferences, apply_policy, make_warning
from dkimverifier.rfcparser import FWS
from dkimverifier.signature import DkimKey, DkimSignatureHeader
from dkimverifier.util import (
    addr_is_in_domain2,
    copy,
    domain_is_in_domain,
    get_default_logger,
    string_equal,
    )

__all__ = [
    'DkimSignature',
    'Verifier',
    'create_msg',
    'default_sign_policy',
    'handle_exception',
    'sort_signatures',
    ]

#: Allowed clock difference between signer and verifier, in seconds.
ALLOWED_TIME_DIFFERENCE = 15 * 60

_FWS_END = re.compile(r"%s?\Z" % FWS)
_FWS_START = re.compile(r"\A%s?" % FWS)
_CHARSET_QUOTED = re.compile(r'charset="([^"]+)"', re.I)
_SUBJECT_TAG = re.compile(r"(Subject:\s)(?:\*|\[).+(?:\*|\])\s(.*)")


def default_sign_policy():
    """Policy of a message for which no sign rule is known."""
    return {
        'shouldBeSigned': False,
        'sdid': [],
        'foundRule': False,
        'hideFail': False,
    }


def create_msg(message, sign_policy=None):
    """Create the message object the verifier works on.

    @param message: the raw message, as bytes or latin-1 decoded string
    @param sign_policy: result of the sign rules for the message
    @return: dict with header_fields, body_plain, from, list_id and
    dkim_sign_policy
    @raise InternalError: the message or its From header are ill-formed
    """
    parsed = parse_msg(message)
    header_fields = parsed['headers']
    if not header_fields.get('from'):
        raise InternalError("E-Mail has no from address",
                            "DKIM_INTERNALERROR_INCORRECT_FROM")
    from_ = parse_from_header(header_fields['from'][0])
    list_id = None
    if header_fields.get('list-id'):
        try:
            list_id = parse_list_id_header(header_fields['list-id'][0])
        except ValueError as x:
            get_default_logger().warning(
                "Ignoring error in parsing of List-Id header: %s" % x)
    return {
        'header_fields': header_fields,
        'body_plain': parsed['body'],
        'from': from_,
        'list_id': list_id,
        'dkim_sign_policy': sign_policy or default_sign_policy(),
    }


def _base_result(result, signature=None):
    if signature is None:
        return {'version': "2.1", 'result': result}
    return {
        'version': "2.1",
        'result': result,
        'sdid': signature.header.d,
        'auid': signature.header.i,
        'selector': signature.header.s,
        'timestamp': signature.header.t,
        'expiration': signature.header.x,
        'algorithmSignature': signature.header.a_sig,
        'algorithmHash': signature.header.a_hash,
        'signedHeaders': list(signature.header.h_array),
        'keyLength': signature.key_length,
    }


def handle_exception(e, msg, signature=None, logger=None):
    """Convert an exception raised during verification into a result.

    @param e: the exception
    @param msg: message object (see L{create_msg})
    @param signature: L{DkimSignature}, if the header could be parsed
    @return: a PERMFAIL or TEMPFAIL result
    """
    if logger is None:
        logger = get_default_logger()
    result = _base_result(None, signature)
    if isinstance(e, SigError):
        result['result'] = "PERMFAIL"
        result['errorType'] = e.error_type
        result['errorStrParams'] = list(e.error_str_params)
        result['hideFail'] = bool(
            e.error_type == "DKIM_SIGERROR_KEY_TESTMODE" or
            (signature is not None and signature.key_testmode) or
            msg['dkim_sign_policy'].get('hideFail'))
        result['keySecure'] = bool(
            signature is not None and signature.key_query_result and
            signature.key_query_result['secure'])
        logger.warning("DKIM signature failed: %s" % e.error_type)
    elif isinstance(e, InternalError):
        result['result'] = "TEMPFAIL"
        result['errorType'] = e.error_type
        logger.error("Temporary error during DKIM verification: %s" % e)
    else:
        result['result'] = "TEMPFAIL"
        logger.error("Error during DKIM verification", exc_info=e)
    return result


class DkimSignature(object):
    """One DKIM-Signature of a message and its verification.

    @param header: the complete DKIM-Signature header field
    @param msg: message object (see L{create_msg})
    @param key_store: object with a coroutine C{fetch_key(sdid, selector)}
    @param prefs: L{Preferences}
    @param logger: logger for debug output
    @raise SigError: the header field is ill-formed
    """

    def __init__(self, header, msg, key_store, prefs=None, logger=None):
        self.msg = msg
        self.key_store = key_store
        self.prefs = prefs or Preferences()
        if logger is None:
            logger = get_default_logger()
        self.logger = logger
        self.header = DkimSignatureHeader(header, self.prefs)
        self.logger.debug("parsed DKIM-Signature: %r" % self.header)
        #: result of the key query, dict with "key" and "secure"
        self.key_query_result = None
        #: parsed key record
        self.key = None
        self.key_length = None
        #: the key is in testing mode (t=y), failures are hidden
        self.key_testmode = False

    @property
    def warnings(self):
        return self.header.warnings

    def compute_body_hash(self):
        """Canonicalize the body, apply the l= tag and hash it."""
        sig = self.header
        body = canonicalization.canonicalize_body(
            sig.c_body, self.msg['body_plain'])
        if sig.l is not None:
            if sig.l > len(body):
                self.logger.debug("canonicalized body length: %d" % len(body))
                raise SigError("DKIM_SIGERROR_TOOLARGE_L")
            elif sig.l < len(body):
                self.warnings.append(make_warning("DKIM_SIGWARNING_SMALL_L"))
                self.logger.debug("Warning: DKIM_SIGWARNING_SMALL_L")
            body = body[:sig.l]
        return crypto.digest(sig.a_hash, body)

    def compute_header_hash_input(self, header_fields):
        """Build the data signed by the signature (RFC 6376 section 3.7).

        Multiple instances of a signed header are used from the bottom
        up.  A signed header that does not exist is the empty string.

        @param header_fields: the header of the message
        """
        sig = self.header
        c_header = sig.c_header
        hash_input = []

        used = {}
        for name in sig.h_array:
            fields = header_fields.get(name, ())
            idx = len(fields) - used.get(name, 0) - 1
            if idx < 0:
                continue
            used[name] = used.get(name, 0) + 1
            hash_input.append(
                canonicalization.canonicalize_header(c_header, fields[idx]))

        # the signature itself, with the value of b= and its surrounding
        # whitespace removed
        original = sig.original_header
        pos = original.find(sig.b_folded)
        begin = _FWS_END.sub("", original[:pos], count=1)
        end = _FWS_START.sub("", original[pos + len(sig.b_folded):], count=1)
        temp = canonicalization.canonicalize_header(c_header, begin + end)
        hash_input.append(temp[:-2])

        return "".join(hash_input)

    async def _fetch_key(self):
        sig = self.header
        self.logger.debug("Receiving DNS key for DKIM-Signature ...")
        self.key_query_result = await self.key_store.fetch_key(sig.d, sig.s)
        if not self.key_query_result['secure']:
            apply_policy(self.prefs.error_policy_key_insecure_treat_as,
                         "DKIM_POLICYERROR_KEY_INSECURE", self.warnings)

        self.key = DkimKey(self.key_query_result['key'])
        self.logger.debug("parsed DKIM key: k=%s t=%s h=%s" % (
            self.key.k, self.key.t, self.key.h))

        if "y" in self.key.t_array:
            self.key_testmode = True
            if self.prefs.error_key_testmode_ignore:
                self.warnings.append(make_warning("DKIM_SIGERROR_KEY_TESTMODE"))
                self.logger.debug("Warning: DKIM_SIGERROR_KEY_TESTMODE")
            else:
                raise SigError("DKIM_SIGERROR_KEY_TESTMODE")

        if sig.a_sig != self.key.k:
            raise SigError("DKIM_SIGERROR_KEY_MISMATCHED_K")

        # with t=s the AUID must not be in a subdomain of the SDID
        if "s" in self.key.t_array and not string_equal(sig.i_domain, sig.d):
            raise SigError("DKIM_SIGERROR_DOMAIN_I")

        if (self.key.h_array is not None and
                sig.a_hash not in self.key.h_array):
            raise SigError("DKIM_SIGERROR_KEY_HASHNOTINCLUDED")

    def _verify_header_hash(self, header_fields):
        sig = self.header
        hash_input = self.compute_header_hash_input(header_fields)
        self.logger.debug("header hash input: %r" % hash_input)
        valid, self.key_length = crypto.verify(
            sig.a_sig, self.key.p, sig.a_hash, sig.b, hash_input)
        return valid

    def _check_key_length(self):
        if self.header.a_sig != "rsa":
            return
        if self.key_length < 1024:
            self.logger.debug("rsa key size: %d" % self.key_length)
            raise SigError("DKIM_SIGWARNING_KEYSMALL")
        elif self.key_length < 2048:
            self.logger.debug("rsa key size: %d" % self.key_length)
            apply_policy(
                self.prefs.error_algorithm_rsa_weak_key_length_treat_as,
                "DKIM_SIGWARNING_KEY_IS_WEAK", self.warnings)

    def _retry_charset_quotes(self, header_fields):
        treat_as = self.prefs.error_content_type_charset_added_quotes_treat_as
        content_type = header_fields.get("content-type")
        if treat_as <= 0 or not content_type:
            return False
        self.logger.debug("Try with removed quotes in Content-Type charset.")
        sanitized = _CHARSET_QUOTED.sub(r"charset=\1", content_type[0],
                                        count=1)
        if sanitized == content_type[0]:
            self.logger.debug("Nothing changed, no need to reverify...")
            return False
        header_fields = dict(header_fields)
        header_fields["content-type"] = [sanitized] + content_type[1:]
        if not self._verify_header_hash(header_fields):
            return False
        apply_policy(treat_as,
                     "DKIM_SIGERROR_CONTENT_TYPE_CHARSET_ADDED_QUOTES",
                     self.warnings)
        return True

    def _retry_sanitized_subject(self, header_fields):
        subject = header_fields.get("subject")
        if not self.prefs.error_sanitize_subject or not subject:
            return False
        self.logger.debug("Trying to sanitize the subject header field")
        m = _SUBJECT_TAG.search(subject[0])
        if m is None:
            self.logger.debug("Nothing changed, no need to reverify...")
            return False
        sanitized_subject = m.group(2).strip()
        sanitized = _SUBJECT_TAG.sub(r"\1\2", subject[0], count=1)
        header_fields = dict(header_fields)
        header_fields["subject"] = [sanitized] + subject[1:]
        if not self._verify_header_hash(header_fields):
            return False
        self.warnings.append(make_warning(
            "DKIM_SIGERROR_SUBJECT_MODIFIED", [sanitized_subject]))
        self.logger.debug("Sanitized subject: %s" % sanitized_subject)
        return True

    async def verify(self):
        """Verify the signature.

        @return: a SUCCESS result
        @raise SigError: the signature is invalid or violates the policy
        @raise InternalError: e.g. the DNS query failed
        """
        msg = self.msg
        sig = self.header
        header_fields = msg['header_fields']

        check_sdid(msg['dkim_sign_policy']['sdid'], msg['from'], sig.d, sig.i,
                   self.warnings, self.prefs)

        # the body length must be known for the signed headers check
        body_hash = self.compute_body_hash()
        self.logger.debug("computed body hash: %s" % body_hash)

        check_headers_signed(header_fields, sig, self.prefs)

        # the time of the first Received header, or the system time
        verify_time = None
        if header_fields.get("received"):
            verify_time = parse_received_time(header_fields["received"][0])
        if verify_time is None:
            verify_time = time.time()
        verify_time = int(round(verify_time))
        self.logger.debug("using %d as time for the expiration check" %
                          verify_time)
        if sig.x is not None and sig.x < verify_time:
            self.warnings.append(make_warning("DKIM_SIGWARNING_EXPIRED"))
            self.logger.debug("Warning: DKIM_SIGWARNING_EXPIRED")
        if sig.t is not None and sig.t > verify_time + ALLOWED_TIME_DIFFERENCE:
            self.warnings.append(make_warning("DKIM_SIGWARNING_FUTURE"))
            self.logger.debug("Warning: DKIM_SIGWARNING_FUTURE")

        if body_hash != sig.bh:
            raise SigError("DKIM_SIGERROR_CORRUPT_BH")

        await self._fetch_key()

        valid = self._verify_header_hash(header_fields)
        self._check_key_length()
        if not valid:
            valid = (self._retry_charset_quotes(header_fields) or
                     self._retry_sanitized_subject(header_fields))
        if not valid:
            raise SigError("DKIM_SIGERROR_BADSIG")

        self.logger.debug("Everything is fine")
        result = _base_result("SUCCESS", self)
        result['warnings'] = copy(self.warnings)
        result['keySecure'] = bool(self.key_query_result['secure'])
        return result


class Verifier(object):
    """Verifies all DKIM signatures of a message.

    @param key_store: object with a coroutine C{fetch_key(sdid, selector)},
    usually a L{dkimverifier.keystore.KeyStore}
    @param prefs: L{Preferences}
    @param logger: a logger to which debug info will be written
    """

    def __init__(self, key_store, prefs=None, logger=None):
        self.key_store = key_store
        self.prefs = prefs or Preferences()
        if logger is None:
            logger = get_default_logger()
        self.logger = logger

    async def verify(self, msg):
        """Verify the message.

        @param msg: message object (see L{create_msg}), or a raw message
        @return: dict with version "2.0" and the list of signature results,
        best first
        """
        if not isinstance(msg, dict):
            msg = create_msg(msg)
        signatures = await self.process_signatures(msg)
        self.check_for_signature_existence(msg, signatures)
        sort_signatures(signatures, msg['from'], msg.get('list_id'))
        return {
            'version': "2.0",
            'signatures': signatures,
        }

    async def process_signatures(self, msg):
        headers = msg['header_fields'].get("dkim-signature", [])
        self.logger.debug("%d DKIM-Signatures found." % len(headers))

        # DKIM-Signatures are prepended, so the oldest one is verified first
        results = []
        for idx in range(len(headers) - 1, -1, -1):
            signature = None
            try:
                self.logger.debug("Verifying DKIM-Signature %d ..." % (idx + 1))
                signature = DkimSignature(headers[idx], msg, self.key_store,
                                          self.prefs, self.logger)
                result = await signature.verify()
                self.logger.debug("Verified DKIM-Signature %d" % (idx + 1))
            except Exception as e:
                result = handle_exception(e, msg, signature, self.logger)
                self.logger.debug("Exception on DKIM-Signature %d" % (idx + 1))
            results.append(result)
        return results

    def check_for_signature_existence(self, msg, signatures):
        """Add a "none" or missing signature result if there is no
        signature."""
        if signatures:
            return
        policy = msg['dkim_sign_policy']
        if policy.get('shouldBeSigned'):
            signatures.append(handle_exception(
                SigError("DKIM_POLICYERROR_MISSING_SIG", policy['sdid']),
                msg, logger=self.logger))
        else:
            signatures.append({'version': "2.0", 'result': "none"})


_RESULT_RANK = {
    "SUCCESS": 0,
    "TEMPFAIL": 1,
    "PERMFAIL": 2,
    "none": 3,
    }


def sort_signatures(signatures, from_, list_id=None):
    """Sort signature results in place, best first.

    Order: result, SUCCESS without warnings, SDID matching the From
    address or the List-Id, ed25519 before rsa, PERMFAIL with a reason
    before one without.

    @raise InternalError: a result has an unknown value
    """

    def result_compare(sig1, sig2):
        if sig1['result'] == sig2['result']:
            return 0
        try:
            return _RESULT_RANK[sig1['result']] - _RESULT_RANK[sig2['result']]
        except KeyError:
            raise InternalError("result_compare: sig1.result: %s; "
                                "sig2.result: %s" % (sig1['result'],
                                                     sig2['result']))

    def warnings_compare(sig1, sig2):
        if sig1['result'] != "SUCCESS":
            return 0
        return bool(sig1.get('warnings')) - bool(sig2.get('warnings'))

    def sdid_compare(sig1, sig2):
        sdid1 = sig1.get('sdid')
        sdid2 = sig2.get('sdid')
        if sdid1 == sdid2:
            return 0
        if from_:
            if sdid1 and addr_is_in_domain2(from_, sdid1):
                return -1
            elif sdid2 and addr_is_in_domain2(from_, sdid2):
                return 1
        if list_id:
            if sdid1 and domain_is_in_domain(list_id, sdid1):
                return -1
            elif sdid2 and domain_is_in_domain(list_id, sdid2):
                return 1
        return 0

    def algorithm_compare(sig1, sig2):
        a1 = sig1.get('algorithmSignature')
        a2 = sig2.get('algorithmSignature')
        if a1 == a2:
            return 0
        if a1 == "ed25519":
            return -1
        if a2 == "ed25519":
            return 1
        return 0

    def error_compare(sig1, sig2):
        if sig1['result'] != "PERMFAIL":
            return 0
        return bool(sig2.get('errorType')) - bool(sig1.get('errorType'))

    def compare(sig1, sig2):
        for cmp in (result_compare, warnings_compare, sdid_compare,
                    algorithm_compare, error_compare):
            res = cmp(sig1, sig2)
            if res != 0:
                return res
        return 0

    signatures.sort(key=functools.cmp_to_key(compare))
