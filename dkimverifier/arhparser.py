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

"""Parser for the Authentication-Results header field (RFC 8601)."""

import logging
import re

from dkimverifier import rfcparser
from dkimverifier.errors import ArhParseError

__all__ = [
    'ArhParser',
    'parse',
    ]

log = logging.getLogger(__name__)

WSP = rfcparser.WSP
# Authentication-Results header fields may use the obsolete folding of RFC
# 5322 4.2, so the productions built on FWS differ from the rfcparser ones.
obs_FWS = r"(?:%s+(?:\r\n%s+)*)" % (WSP, WSP)
FWS = r"(?:(?:(?:%s*\r\n)?%s+)|%s)" % (WSP, WSP, obs_FWS)
FWS_op = FWS + "?"
comment = r"\((?:%s%s)*%s\)" % (FWS_op, rfcparser.ccontent, FWS_op)
CFWS = r"(?:(?:(?:%s%s)+%s)|%s)" % (FWS_op, comment, FWS_op, FWS)
CFWS_op = CFWS + "?"
dot_atom = r"(?:%s%s%s)" % (CFWS_op, rfcparser.dot_atom_text, CFWS_op)
quoted_string = r'(?:%s"(?:%s%s)*%s"%s)' % (
    CFWS_op, FWS_op, rfcparser.qcontent, FWS_op, CFWS_op)
quoted_string_cp = r'(?:%s"((?:%s%s)*)%s"%s)' % (
    CFWS_op, FWS_op, rfcparser.qcontent, FWS_op, CFWS_op)
local_part = r"(?:%s|%s)" % (dot_atom, quoted_string)
token = r'[^ \x00-\x1F\x7F()<>@,;:\\"/\[\]?=]+'
value = r"(?:%s|%s)" % (token, quoted_string)
value_cp = r"(?:(%s)|%s)" % (token, quoted_string_cp)
Keyword = rfcparser.Keyword

_HEADER_NAME = re.compile(r"\AAuthentication-Results:%s" % CFWS_op, re.I)
_QUOTED_VALUE = re.compile(quoted_string_cp)

_RESULT_KEYWORDS = (
    "none|pass|fail|softfail|policy|neutral|temperror|permerror"
    # older SPF specs (e.g. RFC 4408) use mixed case
    "|None|Pass|Fail|SoftFail|Neutral|TempError|PermError")
_METHODSPEC = r";%s(%s)(?:%s/%s([0-9]+))?%s=%s(%s)" % (
    CFWS_op, Keyword, CFWS_op, CFWS_op, CFWS_op, CFWS_op, _RESULT_KEYWORDS)
_REASONSPEC = r"reason%s=%s%s" % (CFWS_op, CFWS_op, value_cp)
_PVALUE = r"%s|(?:(?:%s?@)?%s)" % (value, local_part, rfcparser.domain_name)
# allows e.g. "/" in an unquoted header.b property
_PVALUE_RELAXED = _PVALUE + r'|[^ \x00-\x1F\x7F()<>@,;:\\"\[\]?=]+'
_PROPERTY = r"mailfrom|rcptto|%s" % Keyword
_PROPSPEC_START = r"(%s)%s\.%s(%s)%s=%s" % (
    Keyword, CFWS_op, CFWS_op, _PROPERTY, CFWS_op, CFWS_op)


class _Cursor(object):
    """The unparsed rest of a header field."""

    def __init__(self, value):
        self.value = value

    def match_o(self, pattern):
        """Try to match pattern at the start, preceded by optional CFWS.

        The match must be followed by the end of the header, a ";" or CFWS.
        A match is removed from the rest.

        @return: the match object, or None
        """
        m = re.match(r"%s(?:%s)(?:(?:%s\r\n\Z)|(?=;)|(?=%s))" % (
            CFWS_op, pattern, CFWS_op, CFWS), self.value)
        if m is None:
            return None
        self.value = self.value[m.end():]
        return m

    def match(self, pattern):
        m = self.match_o(pattern)
        if m is None:
            log.debug("str to match against: %r" % self.value)
            raise ArhParseError("Parsing error")
        return m


def _unquote(pvalue):
    m = _QUOTED_VALUE.fullmatch(pvalue)
    if m is None:
        return pvalue
    return m.group(1)


class ArhParser:
    """Parses Authentication-Results header fields.

    >>> arh = ArhParser.parse(
    ...     "Authentication-Results: example.com; spf=pass smtp.mailfrom=example.net\\r\\n")
    >>> arh['authserv_id'], arh['resinfo'][0]['properties']['smtp']
    ('example.com', {'mailfrom': 'example.net'})
    """

    @staticmethod
    def parse(header, relaxed=False):
        """Parse an Authentication-Results header field.

        @param header: the header field, with or without the header name
        @param relaxed: tolerate a trailing ";" and unquoted "/" in
        property values
        @return: dict with authserv_id, authres_version and resinfo
        @raise ArhParseError: the header field is ill-formed
        """
        if not header.endswith("\r\n"):
            header += "\r\n"
        cursor = _Cursor(_HEADER_NAME.sub("", header, count=1))

        res = {'resinfo': []}
        m = cursor.match(r"%s(?:%s([0-9]+)%s)?" % (value_cp, CFWS, CFWS_op))
        res['authserv_id'] = m.group(1) if m.group(1) is not None \
            else m.group(2)
        if m.group(3):
            res['authres_version'] = int(m.group(3))
        else:
            res['authres_version'] = 1

        # no message authentication was performed
        if cursor.match_o(r";%s?none" % CFWS_op) is not None:
            log.debug("no-result")
            return res

        try:
            while cursor.value != "":
                resinfo = ArhParser._parse_resinfo(cursor, relaxed)
                if resinfo is not None:
                    res['resinfo'].append(resinfo)
        except ArhParseError as x:
            x.authserv_id = res['authserv_id']
            raise
        return res

    @staticmethod
    def _parse_resinfo(cursor, relaxed):
        log.debug("parse str: %r" % cursor.value)
        try:
            m = cursor.match(_METHODSPEC)
        except ArhParseError:
            if relaxed:
                # trailing ";" at the end
                cursor.match_o(";")
                if cursor.value.strip() == "":
                    cursor.value = ""
                    return None
            raise

        res = {
            'method': m.group(1),
            'method_version': int(m.group(2)) if m.group(2) else 1,
            'result': m.group(3).lower(),
        }

        m = cursor.match_o(_REASONSPEC)
        if m is not None:
            res['reason'] = m.group(1) if m.group(1) is not None \
                else m.group(2)

        propspec = "%s(%s)" % (_PROPSPEC_START,
                                _PVALUE_RELAXED if relaxed else _PVALUE)
        properties = {
            'smtp': {},
            'header': {},
            'body': {},
            'policy': {},
        }
        while True:
            m = cursor.match_o(propspec)
            if m is None:
                break
            ptype = properties.setdefault(m.group(1), {})
            ptype[m.group(2)] = _unquote(m.group(3))
        res['properties'] = properties

        log.debug("parsed resinfo: %r" % res)
        return res


parse = ArhParser.parse
