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

"""Splitting of raw RFC 5322 messages and extraction of header values."""

import datetime
import email.utils
import logging
import re

from dkimverifier import rfcparser
from dkimverifier.errors import InternalError

__all__ = [
    'parse_addressing_header',
    'parse_from_header',
    'parse_header',
    'parse_list_id_header',
    'parse_msg',
    'parse_received_time',
    'parse_reply_to_header',
    ]

log = logging.getLogger(__name__)

_EOL = re.compile(r"\r\n|\n|\r")
_HEADER_NAME = re.compile(r"([!-9;-~]+)[ \t]*:")
# the first mailbox of an address-list
_MAILBOX = re.compile(r"%s(?:,|\Z)" % rfcparser.mailbox_cp)
_LIST_ID = re.compile(r"<(%s\.%s)>" % (
    rfcparser.dot_atom_text, rfcparser.dot_atom_text))


def _incorrect_format():
    return InternalError("Message is not in correct e-mail format",
                         "DKIM_INTERNALERROR_INCORRECT_EMAIL_FORMAT")


def parse_msg(msg):
    """Split a message into parsed header and body.

    >>> m = parse_msg(b"From: a@example.com\\nSubject: x\\n\\nbody\\n")
    >>> m['headers']['subject']
    ['Subject: x\\r\\n']
    >>> m['body']
    'body\\r\\n'

    @param msg: the raw message, as bytes or as a latin-1 decoded string
    @return: dict with "headers" (lower case name to list of complete
    header fields) and "body"
    @raise InternalError: message is not in correct e-mail format
    """
    if isinstance(msg, bytes):
        msg = msg.decode('latin-1')

    newline_length = 2
    pos_end_header = msg.find("\r\n\r\n")
    if pos_end_header == -1:
        pos_end_header = msg.find("\n\n")
        if pos_end_header != -1:
            newline_length = 1
            log.debug("LF line ending detected")
    if pos_end_header == -1:
        pos_end_header = msg.find("\r\r")
        if pos_end_header != -1:
            newline_length = 1
            log.debug("CR line ending detected")

    if pos_end_header == -1:
        # no body, the header must still be terminated
        header_plain = _EOL.sub("\r\n", msg)
        if not header_plain.endswith("\r\n"):
            raise _incorrect_format()
        body = ""
    else:
        header_plain = _EOL.sub(
            "\r\n", msg[:pos_end_header + newline_length])
        body = _EOL.sub("\r\n", msg[pos_end_header + 2 * newline_length:])

    return {
        'headers': parse_header(header_plain),
        'body': body,
    }


def parse_header(header_plain):
    """Parse a header block into a dict of header fields.

    @param header_plain: header block with CRLF line endings
    @return: dict, key is the header name in lower case, value a list of
    the complete header fields (including name and trailing CRLF) in the
    order they appear
    @raise InternalError: a header field has no name
    """
    header_fields = {}
    for field in re.split(r"\r\n(?=\S|\Z)", header_plain):
        if not field:
            continue
        m = _HEADER_NAME.match(field)
        if m is None:
            log.debug("header field without name: %r" % field)
            raise _incorrect_format()
        header_fields.setdefault(m.group(1).lower(), []).append(field + "\r\n")
    return header_fields


def parse_addressing_header(header):
    """Extract the first address from a header with an address-list.

    >>> parse_addressing_header('"this is from foo" <foo@example.com>')
    'foo@example.com'
    >>> parse_addressing_header(' foo@example.com (Foo)')
    'foo@example.com'
    >>> parse_addressing_header('"<ceo@example.org>" <foo@example.com>')
    'foo@example.com'

    @param header: the header value, without the header name
    @raise ValueError: the header does not contain an address
    """
    if header.endswith("\r\n"):
        header = header[:-2]
    m = _MAILBOX.match(header)
    if m is None:
        raise ValueError("header does not contain an address")
    return m.group(1) or m.group(2)


def parse_from_header(header):
    """Extract the address of a complete From header field.

    >>> parse_from_header("From: Joe SixPack <joe@football.example.com>\\r\\n")
    'joe@football.example.com'

    @raise InternalError: DKIM_INTERNALERROR_INCORRECT_FROM
    """
    value = re.sub(r"^From[ \t]*:", "", header, count=1, flags=re.I)
    try:
        return parse_addressing_header(value)
    except ValueError:
        raise InternalError("From address is ill-formed",
                             "DKIM_INTERNALERROR_INCORRECT_FROM")


def parse_reply_to_header(header):
    """Extract the address of a complete Reply-To header field.

    @return: the address, or None if there is none
    """
    value = re.sub(r"^Reply-To[ \t]*:", "", header, count=1, flags=re.I)
    try:
        return parse_addressing_header(value)
    except ValueError:
        log.warning("Ignoring error in parsing of Reply-To header: %r" %
                    header)
        return None


def parse_list_id_header(header):
    """Extract the list identifier of a complete List-Id header field.

    >>> parse_list_id_header("List-Id: Example list <list.example.com>\\r\\n")
    'list.example.com'

    @raise ValueError: the header does not contain a list identifier
    """
    value = re.sub(r"^List-Id[ \t]*:", "", header, count=1, flags=re.I)
    m = _LIST_ID.search(value)
    if m is None:
        raise ValueError("List-Id header is ill-formed")
    return m.group(1)


def parse_received_time(header):
    """Return the date of a Received header as a UNIX timestamp.

    The date is the part after the last ";".  Returns None if it can not be
    parsed.
    """
    date = header[header.rfind(";") + 1:].strip()
    try:
        received = email.utils.parsedate_to_datetime(date)
    except (TypeError, ValueError, IndexError) as x:
        log.warning("Could not parse date of Received header %r: %s" %
                    (date, x))
        return None
    if received.tzinfo is None:
        # -0000 or a missing zone, RFC 5322 3.3
        received = received.replace(tzinfo=datetime.timezone.utc)
    return received.timestamp()
