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

"""Grammar fragments from RFC 5234, 5321, 5322, 2045 and 6376.

Every fragment is a regular expression string without anchors, so the
fragments can be composed into larger patterns.  Fragments are named after
the ABNF rule they implement.
"""

import re

from dkimverifier.errors import (
    InternalError,
    SigError,
    )

__all__ = [
    'DUPLICATE',
    'ILL_FORMED',
    'parse_tag_value',
    'parse_tag_value_list',
    ]

#: parse_tag_value_list() result for an ill-formed tag-spec.
ILL_FORMED = -1
#: parse_tag_value_list() result for a repeated tag name.
DUPLICATE = -2

# RFC 5234 B.1, core rules
VCHAR = r"[!-~]"
WSP = r"[ \t]"

# RFC 5321 4.1.2
Let_dig = r"[A-Za-z0-9]"
Ldh_str = r"(?:[A-Za-z0-9-]*%s)" % Let_dig
Keyword = Ldh_str
sub_domain = r"(?:%s%s?)" % (Let_dig, Ldh_str)

# RFC 5322 3.2.1 - 3.2.5 (obsolete forms are not supported)
quoted_pair = r"(?:\\(?:%s|%s))" % (VCHAR, WSP)
# as specified in RFC 6376 2.8
FWS = r"(?:%s*(?:\r\n)?%s+)" % (WSP, WSP)
FWS_op = FWS + "?"
ctext = r"[!-'*-\[\]-~]"
ccontent = r"(?:%s|%s)" % (ctext, quoted_pair)
comment = r"\((?:%s%s)*%s\)" % (FWS_op, ccontent, FWS_op)
CFWS = r"(?:(?:(?:%s%s)+%s)|%s)" % (FWS_op, comment, FWS_op, FWS)
CFWS_op = CFWS + "?"
atext = r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]"
# RFC 6532 3.2, only allowed in display names
UTF8_non_ascii = r"[^\x00-\x7F]"
# atom without surrounding CFWS; "." is allowed for obs-phrase
atom_b_obs = r"(?:(?:%s|%s|\.)+)" % (atext, UTF8_non_ascii)
dot_atom_text = r"(?:%s+(?:\.%s+)*)" % (atext, atext)
qtext = r"[!#-\[\]-~]"
qcontent = r"(?:%s|%s)" % (qtext, quoted_pair)
quoted_string = r'(?:%s"(?:%s(?:%s|%s))*%s"%s)' % (
    CFWS_op, FWS_op, qcontent, UTF8_non_ascii, FWS_op, CFWS_op)
word_chain = r"(?:(?:%s|(?:%s?%s)+%s?))" % (
    atom_b_obs, atom_b_obs, quoted_string, atom_b_obs)
phrase = r"(?:%s%s(?:%s%s)*%s)" % (
    CFWS_op, word_chain, CFWS, word_chain, CFWS_op)

# RFC 5322 3.4 and 3.4.1, without domain-literal and obsolete forms.
# addr-spec without surrounding CFWS
addr_spec = r'(?:(?:%s|"(?:%s%s)*%s")@%s)' % (
    dot_atom_text, FWS_op, qcontent, FWS_op, dot_atom_text)
display_name = r"(?:%s)" % phrase
# captures the address of a name-addr in group 1, of an addr-spec in
# group 2
mailbox_cp = r"(?:%s?%s<%s(%s)%s>%s|%s(%s)%s)" % (
    display_name, CFWS_op, CFWS_op, addr_spec, CFWS_op, CFWS_op,
    CFWS_op, addr_spec, CFWS_op)

# RFC 6376 2.10, 2.11 and 3.5
domain_name = r"(?:%s(?:\.%s)+)" % (sub_domain, sub_domain)
hyphenated_word = r"(?:[A-Za-z](?:[A-Za-z0-9-]*[A-Za-z0-9])?)"
ALPHADIGITPS = r"[A-Za-z0-9+/]"
base64string = r"(?:%s(?:%s?%s)*(?:%s?=){0,2})" % (
    ALPHADIGITPS, FWS, ALPHADIGITPS, FWS)
dkim_safe_char = r"[!-:<>-~]"
# RFC 2045 6.7, additional FWS is allowed for copied header fields
hex_octet = r"(?:=%s?[0-9ABCDEF]%s?[0-9ABCDEF])" % (FWS, FWS)
# dkim-quoted-printable with "|" encoded
qp_hdr_value = r"(?:(?:%s|%s|[!-:<>-{}-~])*)" % (FWS, hex_octet)
# RFC 5322 field-name without ";"
hdr_name = r"(?:[!-9<-~]+)"

_tval = r"[!-:<-~]+"
_tag_name = r"[A-Za-z][A-Za-z0-9_]*"
_tag_value = r"(?:%s(?:(?:%s|%s)+%s)*)?" % (_tval, WSP, FWS, _tval)
_tag_spec = re.compile(r"%s?(%s)%s?=%s?(%s)%s?" % (
    FWS, _tag_name, FWS, FWS, _tag_value, FWS))


def parse_tag_value_list(text):
    """Parse a DKIM Tag=Value list.

    Interprets the syntax specified by RFC 6376 section 3.2.  Folding
    whitespace may still be present.

    >>> parse_tag_value_list("v=1; a=rsa-sha256;")
    {'v': '1', 'a': 'rsa-sha256'}
    >>> parse_tag_value_list("v=1; v=2") == DUPLICATE
    True
    >>> parse_tag_value_list("v=1; foo") == ILL_FORMED
    True

    @param text: A string containing a DKIM Tag=Value list.
    @return: dict of tag to value, or L{ILL_FORMED} / L{DUPLICATE}
    """
    # a single trailing semicolon is valid
    if text.endswith(";"):
        text = text[:-1]

    tags = {}
    for tag_spec in text.split(";"):
        m = _tag_spec.fullmatch(tag_spec)
        if m is None:
            return ILL_FORMED
        name, value = m.group(1), m.group(2)
        if name in tags:
            return DUPLICATE
        tags[name] = value
    return tags


def parse_tag_value(tag_map, tag_name, pattern, exp_type=1):
    """Match the value of a tag against a pattern.

    @param tag_map: dict returned by L{parse_tag_value_list}
    @param tag_name: name of the tag
    @param pattern: regular expression the whole value must match
    @param exp_type: 1 for a DKIM-Signature, 2 for a DKIM key, 3 for others
    @return: the match object, or None if the tag does not exist
    @raise SigError: value is ill-formed (exp_type 1 and 2)
    @raise InternalError: value is ill-formed (exp_type 3)
    """
    value = tag_map.get(tag_name)
    if value is None:
        return None

    m = re.fullmatch(pattern, value)
    if m is None:
        if exp_type == 1:
            raise SigError("DKIM_SIGERROR_ILLFORMED_%s" % tag_name.upper())
        elif exp_type == 2:
            raise SigError("DKIM_SIGERROR_KEY_ILLFORMED_%s" % tag_name.upper())
        raise InternalError("illformed tag %s" % tag_name)
    return m
