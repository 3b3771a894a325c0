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

"""Parsing of the DKIM-Signature header field and of DKIM key records."""

import logging
import re

from dkimverifier.errors import SigError
from dkimverifier.prefs import Preferences, apply_policy
from dkimverifier.rfcparser import (
    DUPLICATE,
    FWS,
    ILL_FORMED,
    base64string,
    dkim_safe_char,
    domain_name,
    dot_atom_text,
    hdr_name,
    hex_octet,
    hyphenated_word,
    parse_tag_value,
    parse_tag_value_list,
    qp_hdr_value,
    sub_domain,
    )
from dkimverifier.util import domain_is_in_domain

__all__ = [
    'DkimKey',
    'DkimSignatureHeader',
    ]

log = logging.getLogger(__name__)

_FWS = re.compile(FWS)

_SIG_A_TAG = r"(rsa|ed25519|[A-Za-z][A-Za-z0-9]*)-(sha1|sha256|[A-Za-z][A-Za-z0-9]*)"
_SIG_C_TAG_ALG = r"(simple|relaxed|%s)" % hyphenated_word
_SIG_C_TAG = r"%s(?:/%s)?" % (_SIG_C_TAG_ALG, _SIG_C_TAG_ALG)
_SIG_H_TAG = r"(%s)(?:%s?:%s?%s)*" % (hdr_name, FWS, FWS, hdr_name)
_SIG_I_TAG = r"%s?@(%s)" % (dot_atom_text, domain_name)
_SIG_Q_TAG_METHOD = r"(?:dns/txt|%s(?:/%s)?)" % (hyphenated_word, qp_hdr_value)
_SIG_Q_TAG = r"%s(?:%s?:%s?%s)*" % (
    _SIG_Q_TAG_METHOD, FWS, FWS, _SIG_Q_TAG_METHOD)
_SIG_S_TAG = r"%s(?:\.%s)*" % (sub_domain, sub_domain)
# selectors seen in the wild also use "_"
_SUB_DOMAIN_RELAXED = r"(?:[A-Za-z0-9_](?:[A-Za-z0-9_-]*[A-Za-z0-9_])?)"
_SIG_S_TAG_RELAXED = r"%s(?:\.%s)*" % (_SUB_DOMAIN_RELAXED, _SUB_DOMAIN_RELAXED)
_HDR_NAME_FWS = r"(?:(?:[!-9<-~]%s?)+)" % FWS
_SIG_Z_TAG_COPY = r"%s%s?:%s" % (_HDR_NAME_FWS, FWS, qp_hdr_value)
_SIG_Z_TAG = r"%s(?:\|%s?%s)*" % (_SIG_Z_TAG_COPY, FWS, _SIG_Z_TAG_COPY)

_KEY_H_TAG_ALG = r"(?:sha1|sha256|%s)" % hyphenated_word
_KEY_H_TAG = r"%s(?:%s?:%s?%s)*" % (_KEY_H_TAG_ALG, FWS, FWS, _KEY_H_TAG_ALG)
_KEY_K_TAG = r"(?:rsa|ed25519|%s)" % hyphenated_word
_PTEXT = r"(?:%s|[!-<>-~])" % hex_octet
_QP_SECTION = r"(?:(?:%s| |\t)*%s)?" % (_PTEXT, _PTEXT)
_KEY_S_TAG_TYPE = r"(?:email|\*|%s)" % hyphenated_word
_KEY_S_TAG = r"%s(?:%s?:%s?%s)*" % (
    _KEY_S_TAG_TYPE, FWS, FWS, _KEY_S_TAG_TYPE)
_KEY_T_TAG_FLAG = r"(?:y|s|%s)" % hyphenated_word
_KEY_T_TAG = r"%s(?:%s?:%s?%s)*" % (
    _KEY_T_TAG_FLAG, FWS, FWS, _KEY_T_TAG_FLAG)


def _strip_fws(value):
    return _FWS.sub("", value)


def _split_list(value, lower=False):
    items = [x.strip() for x in value.split(":")]
    if lower:
        items = [x.lower() for x in items]
    return [x for x in items if x]


class DkimSignatureHeader(object):
    """A parsed DKIM-Signature header field (RFC 6376 section 3.5).

    Construction either succeeds with all required tags present and
    consistent, or raises a SigError.

    @ivar original_header: the complete header field, including name and
    trailing CRLF
    @ivar warnings: warnings found during parsing
    """

    def __init__(self, header, prefs=None):
        self.original_header = header
        self.prefs = prefs or Preferences()
        self.warnings = []
        self.v = None
        self.a_sig = None
        self.a_hash = None
        self.b = None
        self.b_folded = None
        self.bh = None
        self.c_header = None
        self.c_body = None
        self.d = None
        self.h = None
        self.h_array = []
        self.i = None
        self.i_domain = None
        self.l = None
        self.q = None
        self.s = None
        self.t = None
        self.x = None
        self.z = None
        self._parse()

    def _parse(self):
        value = re.sub(r"^DKIM-Signature[ \t]*:", "", self.original_header,
                       count=1, flags=re.I)
        # strip the CRLF at the end
        if value.endswith("\r\n"):
            value = value[:-2]

        tags = parse_tag_value_list(value)
        if tags == ILL_FORMED:
            raise SigError("DKIM_SIGERROR_ILLFORMED_TAGSPEC")
        elif tags == DUPLICATE:
            raise SigError("DKIM_SIGERROR_DUPLICATE_TAG")

        self._parse_version(tags)
        self._parse_algorithm(tags)

        b_tag = parse_tag_value(tags, "b", base64string)
        if b_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_B")
        self.b = _strip_fws(b_tag.group(0))
        self.b_folded = b_tag.group(0)

        bh_tag = parse_tag_value(tags, "bh", base64string)
        if bh_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_BH")
        self.bh = _strip_fws(bh_tag.group(0))

        self._parse_canonicalization(tags)

        d_tag = parse_tag_value(tags, "d", domain_name)
        if d_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_D")
        self.d = d_tag.group(0)

        h_tag = parse_tag_value(tags, "h", _SIG_H_TAG)
        if h_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_H")
        self.h = _strip_fws(h_tag.group(0))
        self.h_array = _split_list(self.h, lower=True)
        if "from" not in self.h_array:
            raise SigError("DKIM_SIGERROR_MISSING_FROM")

        self._parse_auid(tags)

        l_tag = parse_tag_value(tags, "l", r"[0-9]{1,76}")
        if l_tag is not None:
            self.l = int(l_tag.group(0))

        q_tag = parse_tag_value(tags, "q", _SIG_Q_TAG)
        if q_tag is not None and "dns/txt" not in q_tag.group(0):
            raise SigError("DKIM_SIGERROR_UNKNOWN_Q")
        self.q = "dns/txt"

        self._parse_selector(tags)

        t_tag = parse_tag_value(tags, "t", r"[0-9]+")
        if t_tag is not None:
            self.t = int(t_tag.group(0))
        x_tag = parse_tag_value(tags, "x", r"[0-9]+")
        if x_tag is not None:
            self.x = int(x_tag.group(0))
            if self.t is not None and self.x < self.t:
                raise SigError("DKIM_SIGERROR_TIMESTAMPS")

        z_tag = parse_tag_value(tags, "z", _SIG_Z_TAG)
        if z_tag is not None:
            self.z = _strip_fws(z_tag.group(0))
        log.debug("parsed DKIM-Signature d=%s s=%s i=%s h=%s" % (
            self.d, self.s, self.i, self.h))

    def _parse_version(self, tags):
        v_tag = parse_tag_value(tags, "v", r"[0-9]+")
        if v_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_V")
        if v_tag.group(0) != "1":
            raise SigError("DKIM_SIGERROR_VERSION")
        self.v = "1"

    def _parse_algorithm(self, tags):
        a_tag = parse_tag_value(tags, "a", _SIG_A_TAG)
        if a_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_A")
        algorithm = a_tag.group(0)
        if algorithm == "rsa-sha1":
            apply_policy(self.prefs.error_algorithm_rsa_sha1_treat_as,
                         "DKIM_SIGERROR_INSECURE_A", self.warnings)
        elif algorithm not in ("rsa-sha256", "ed25519-sha256"):
            raise SigError("DKIM_SIGERROR_UNKNOWN_A")
        self.a_sig = a_tag.group(1)
        self.a_hash = a_tag.group(2)

    def _parse_canonicalization(self, tags):
        c_tag = parse_tag_value(tags, "c", _SIG_C_TAG)
        self.c_header = "simple"
        self.c_body = "simple"
        if c_tag is None:
            return
        if c_tag.group(1) not in ("simple", "relaxed"):
            raise SigError("DKIM_SIGERROR_UNKNOWN_C_H")
        self.c_header = c_tag.group(1)
        if c_tag.group(2) is not None:
            if c_tag.group(2) not in ("simple", "relaxed"):
                raise SigError("DKIM_SIGERROR_UNKNOWN_C_B")
            self.c_body = c_tag.group(2)

    def _parse_auid(self, tags):
        i_tag = None
        try:
            i_tag = parse_tag_value(tags, "i", _SIG_I_TAG)
        except SigError as x:
            if x.error_type != "DKIM_SIGERROR_ILLFORMED_I":
                raise
            apply_policy(self.prefs.error_illformed_i_treat_as,
                         "DKIM_SIGERROR_ILLFORMED_I", self.warnings)

        if i_tag is None:
            self.i = "@" + self.d
            self.i_domain = self.d
        else:
            self.i = i_tag.group(0)
            self.i_domain = i_tag.group(1)
            # the AUID domain must be the SDID or one of its subdomains
            if not domain_is_in_domain(self.i_domain, self.d):
                raise SigError("DKIM_SIGERROR_SUBDOMAIN_I")

    def _parse_selector(self, tags):
        try:
            s_tag = parse_tag_value(tags, "s", _SIG_S_TAG)
        except SigError as x:
            if x.error_type != "DKIM_SIGERROR_ILLFORMED_S":
                raise
            # retry with a more relaxed grammar, raises if still ill-formed
            s_tag = parse_tag_value(tags, "s", _SIG_S_TAG_RELAXED)
            apply_policy(self.prefs.error_illformed_s_treat_as,
                         "DKIM_SIGERROR_ILLFORMED_S", self.warnings)
        if s_tag is None:
            raise SigError("DKIM_SIGERROR_MISSING_S")
        self.s = s_tag.group(0)

    def __repr__(self):
        return "<DkimSignatureHeader d=%s s=%s a=%s-%s>" % (
            self.d, self.s, self.a_sig, self.a_hash)


class DkimKey(object):
    """A parsed DKIM key record (RFC 6376 section 3.6.1).

    >>> key = DkimKey("v=DKIM1; k=ed25519; t=y:s; p=11qYAYKxCrfVS/7TyWQHOg7hcvPapiMlrwIaaPcHURo=")
    >>> key.k, key.t_array
    ('ed25519', ['y', 's'])
    """

    def __init__(self, record):
        self.record = record
        self.v = None
        self.h = None
        self.h_array = None
        self.k = None
        self.n = None
        self.p = None
        self.s = None
        self.t = ""
        self.t_array = []
        self._parse()

    def _parse(self):
        tags = parse_tag_value_list(self.record)
        if tags == ILL_FORMED:
            raise SigError("DKIM_SIGERROR_KEY_ILLFORMED_TAGSPEC")
        elif tags == DUPLICATE:
            raise SigError("DKIM_SIGERROR_KEY_DUPLICATE_TAG")

        v_tag = parse_tag_value(tags, "v", r"%s*" % dkim_safe_char, 2)
        if v_tag is not None and v_tag.group(0) != "DKIM1":
            raise SigError("DKIM_SIGERROR_KEY_INVALID_V")
        self.v = "DKIM1"

        h_tag = parse_tag_value(tags, "h", _KEY_H_TAG, 2)
        if h_tag is not None:
            self.h = h_tag.group(0)
            self.h_array = _split_list(self.h)

        k_tag = parse_tag_value(tags, "k", _KEY_K_TAG, 2)
        if k_tag is None:
            self.k = "rsa"
        elif k_tag.group(0) in ("rsa", "ed25519"):
            self.k = k_tag.group(0)
        else:
            raise SigError("DKIM_SIGERROR_KEY_UNKNOWN_K")

        n_tag = parse_tag_value(tags, "n", _QP_SECTION, 2)
        if n_tag is not None:
            self.n = n_tag.group(0)

        p_tag = parse_tag_value(tags, "p", r"%s?" % base64string, 2)
        if p_tag is None:
            raise SigError("DKIM_SIGERROR_KEY_MISSING_P")
        if p_tag.group(0) == "":
            raise SigError("DKIM_SIGERROR_KEY_REVOKED")
        self.p = _strip_fws(p_tag.group(0))

        s_tag = parse_tag_value(tags, "s", _KEY_S_TAG, 2)
        if s_tag is None:
            self.s = "*"
        else:
            service_types = _split_list(s_tag.group(0))
            if "*" not in service_types and "email" not in service_types:
                raise SigError("DKIM_SIGERROR_KEY_NOTEMAILKEY")
            self.s = s_tag.group(0)

        t_tag = parse_tag_value(tags, "t", _KEY_T_TAG, 2)
        if t_tag is not None:
            self.t = t_tag.group(0)
            self.t_array = _split_list(self.t)

