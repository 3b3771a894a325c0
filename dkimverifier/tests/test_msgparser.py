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
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

import unittest

from dkimverifier.errors import InternalError
from dkimverifier.msgparser import (
    parse_addressing_header,
    parse_from_header,
    parse_list_id_header,
    parse_msg,
    parse_received_time,
    parse_reply_to_header,
    )


class TestParseMsg(unittest.TestCase):

    def test_crlf(self):
        msg = parse_msg(b"From: a@example.com\r\nSubject: x\r\n"
                        b" folded\r\n\r\nbody\r\n")
        self.assertEqual({
            'from': ['From: a@example.com\r\n'],
            'subject': ['Subject: x\r\n folded\r\n'],
            }, msg['headers'])
        self.assertEqual('body\r\n', msg['body'])

    def test_lf_is_converted(self):
        msg = parse_msg("From: a@example.com\nTo: b@example.com\n\n"
                        "line 1\nline 2\n")
        self.assertEqual(['To: b@example.com\r\n'], msg['headers']['to'])
        self.assertEqual('line 1\r\nline 2\r\n', msg['body'])

    def test_repeated_headers_keep_order(self):
        msg = parse_msg("Received: 1\r\nFrom: a@example.com\r\n"
                        "received: 2\r\n\r\n")
        self.assertEqual(['Received: 1\r\n', 'received: 2\r\n'],
                         msg['headers']['received'])

    def test_latin1(self):
        msg = parse_msg(b"Subject: \xe4\r\n\r\n\xfc\r\n")
        self.assertEqual(['Subject: \xe4\r\n'], msg['headers']['subject'])
        self.assertEqual('\xfc\r\n', msg['body'])

    def test_no_body(self):
        msg = parse_msg("From: a@example.com\r\n")
        self.assertEqual('', msg['body'])

    def test_unterminated_header(self):
        self.assertRaises(InternalError, parse_msg, "From: a@example.com")

    def test_header_without_name(self):
        self.assertRaises(InternalError, parse_msg,
                          "no header\r\nFrom: a@example.com\r\n\r\n")


class TestAddresses(unittest.TestCase):

    def test_angle_addr(self):
        self.assertEqual(
            'joe@example.com',
            parse_addressing_header(' "Joe, Jr." <joe@example.com>'))

    def test_addr_spec(self):
        self.assertEqual(
            'joe@example.com',
            parse_addressing_header(' joe@example.com'))

    def test_quoted_display_name_with_address(self):
        self.assertEqual(
            'attacker@evil.example',
            parse_from_header(
                'From: "<ceo@paypal.com>" <attacker@evil.example>\r\n'))

    def test_comment_with_address(self):
        self.assertEqual(
            'attacker@evil.example',
            parse_from_header(
                'From: attacker@evil.example (<ceo@paypal.com>)\r\n'))

    def test_folded_name_addr(self):
        self.assertEqual(
            'joe@example.com',
            parse_from_header('From: Joe Q. Public\r\n <joe@example.com>'
                              ' (Joe)\r\n'))

    def test_non_ascii_display_name(self):
        self.assertEqual(
            'joerg@example.com',
            parse_from_header('From: J\xf6rg <joerg@example.com>\r\n'))

    def test_address_list(self):
        self.assertEqual(
            'joe@example.com',
            parse_addressing_header(
                ' Joe <joe@example.com>, bob@example.com'))

    def test_junk_after_address(self):
        self.assertRaises(ValueError, parse_addressing_header,
                          ' <joe@example.com> <ceo@example.org>')

    def test_no_address(self):
        self.assertRaises(ValueError, parse_addressing_header, ' undisclosed')

    def test_from(self):
        self.assertEqual(
            'joe@example.com',
            parse_from_header('FROM:Joe <joe@example.com>\r\n'))

    def test_from_without_address(self):
        try:
            parse_from_header('From: nobody\r\n')
        except InternalError as x:
            self.assertEqual('DKIM_INTERNALERROR_INCORRECT_FROM', x.error_type)
        else:
            self.fail('no InternalError raised')

    def test_reply_to(self):
        self.assertEqual(
            'list@example.org',
            parse_reply_to_header('Reply-To: <list@example.org>\r\n'))
        self.assertIsNone(parse_reply_to_header('Reply-To: nobody\r\n'))

    def test_list_id(self):
        self.assertEqual(
            'dev.lists.example.org',
            parse_list_id_header('List-Id: "Dev" <dev.lists.example.org>\r\n'))
        self.assertRaises(ValueError, parse_list_id_header,
                          'List-Id: dev.lists.example.org\r\n')


class TestReceivedTime(unittest.TestCase):

    def test_date(self):
        header = ('Received: from client1.football.example.com  '
                  '[192.0.2.1]\r\n      by submitserver.example.com with '
                  'SUBMISSION;\r\n      Fri, 11 Jul 2003 21:01:54 -0700 '
                  '(PDT)\r\n')
        self.assertEqual(1057982514, parse_received_time(header))

    def test_date_without_zone_is_utc(self):
        header = ('Received: by submitserver.example.com;\r\n'
                  '      Fri, 11 Jul 2003 21:01:54 -0000\r\n')
        self.assertEqual(1057957314, parse_received_time(header))

    def test_invalid_date(self):
        self.assertIsNone(
            parse_received_time('Received: by example.com; yesterday\r\n'))


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
