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

import re

__all__ = [
    'InvalidCanonicalizationError',
    'Relaxed',
    'Simple',
    'algorithms',
    'canonicalize_body',
    'canonicalize_header',
    ]


class InvalidCanonicalizationError(Exception):
    """Unknown canonicalization algorithm name."""
    pass


def _strip_trailing_lines(body):
    # Ignore all empty lines at the end of the message body.
    return re.sub(r"(?:\r\n)*\Z", "\r\n", body, count=1)


class Simple:
    """Class that represents the "simple" canonicalization algorithm."""

    name = "simple"

    @staticmethod
    def canonicalize_header(header):
        # No changes to headers.
        return header

    @staticmethod
    def canonicalize_body(body):
        return _strip_trailing_lines(body)


class Relaxed:
    """Class that represents the "relaxed" canonicalization algorithm."""

    name = "relaxed"

    @staticmethod
    def canonicalize_header(header):
        # Convert the header field name to lowercase.
        header = re.sub(r"^\S[^:]*", lambda m: m.group(0).lower(), header,
                        count=1)
        # Unfold the header line.
        header = header.replace("\r\n ", " ").replace("\r\n\t", " ")
        # Compress WSP to single space.
        header = re.sub(r"[ \t]+", " ", header)
        # Remove all WSP at the end of the field value.
        header = re.sub(r"[ \t]+\r\n", "\r\n", header, count=1)
        # Remove WSP around the colon separating name and value.
        header = re.sub(r"[ \t]*:[ \t]*", ":", header, count=1)
        return header

    @staticmethod
    def canonicalize_body(body):
        # Remove all trailing WSP at end of lines.
        removed_trailing_wsp = re.sub(r"[ \t]+\r\n", "\r\n", body)
        # Compress non-line-ending WSP to single space.
        compressed_wsp = re.sub(r"[ \t]+", " ", removed_trailing_wsp)
        removed_trailing_lines = _strip_trailing_lines(compressed_wsp)
        # An empty body canonicalizes to the empty string.
        if removed_trailing_lines == "\r\n":
            return ""
        return removed_trailing_lines


algorithms = dict((c.name, c) for c in (Simple, Relaxed))


def _get(name):
    try:
        return algorithms[name.lower()]
    except KeyError:
        raise InvalidCanonicalizationError(name)


def canonicalize_header(name, header):
    """Canonicalize one raw header field (including its trailing CRLF).

    >>> canonicalize_header("relaxed", "SubJect : A  b \\r\\n")
    'subject:A b\\r\\n'
    """
    return _get(name).canonicalize_header(header)


def canonicalize_body(name, body):
    """Canonicalize a message body.

    >>> canonicalize_body("simple", "")
    '\\r\\n'
    >>> canonicalize_body("relaxed", " \\r\\n\\r\\n")
    ''
    """
    return _get(name).canonicalize_body(body)
