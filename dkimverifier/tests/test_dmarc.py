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

from dkimverifier.dmarc import DMARC, parse_dmarc_record
from dkimverifier.dnsplug import RCODE, txt_result
from dkimverifier.errors import InternalError
from dkimverifier.prefs import Preferences
from dkimverifier.tests.dnsstub import create_query_txt

# RFC 7489 Appendix B
RECORDS = {
    "_dmarc.example.com":
        "v=DMARC1; p=none; rua=mailto:dmarc-feedback@example.com",
    "_dmarc.example.org":
        "v=DMARC1; p=quarantine; sp=reject; adkim=s; "
        "rua=mailto:dmarc-feedback@example.org; pct=25",
    "_dmarc.example.net": "v=DMARC1; p=reject",
    "_dmarc.invalid.example": "v=DMARC1; p=everything",
    }


class TestParseDmarcRecord(unittest.TestCase):

    def test_minimal(self):
        self.assertEqual(
            {'v': "DMARC1", 'adkim': "r", 'p': "none", 'pct': 100,
             'sp': None},
            parse_dmarc_record(RECORDS["_dmarc.example.com"]))

    def test_all_tags(self):
        self.assertEqual(
            {'v': "DMARC1", 'adkim': "s", 'p': "quarantine", 'pct': 25,
             'sp': "reject"},
            parse_dmarc_record(RECORDS["_dmarc.example.org"]))

    def assertDmarcError(self, error_type, record):
        try:
            parse_dmarc_record(record)
        except InternalError as x:
            self.assertEqual(error_type, x.error_type)
        else:
            self.fail("no InternalError raised")

    def test_errors(self):
        self.assertDmarcError("DKIM_DMARCERROR_MISSING_V", "p=none")
        self.assertDmarcError("DKIM_DMARCERROR_MISSING_P", "v=DMARC1")
        self.assertDmarcError("DKIM_DMARCERROR_INVALID_PCT",
                              "v=DMARC1; p=none; pct=101")
        self.assertDmarcError("DKIM_DMARCERROR_ILLFORMED_TAGSPEC",
                              "v=DMARC1; p")
        self.assertDmarcError("DKIM_DMARCERROR_DUPLICATE_TAG",
                              "v=DMARC1; p=none; p=reject")
        self.assertRaises(InternalError, parse_dmarc_record,
                          "v=DMARC1; p=everything")


class TestDMARC(unittest.IsolatedAsyncioTestCase):

    def dmarc(self, **prefs):
        return DMARC(create_query_txt(RECORDS), Preferences(**prefs))

    async def test_policy(self):
        policy = await self.dmarc().get_policy("joe@example.org")
        self.assertEqual(
            {'adkim': "s", 'pct': 25, 'p': "quarantine",
             'domain': "example.org", 'source': "example.org"},
            policy)

    async def test_policy_of_organizational_domain(self):
        policy = await self.dmarc().get_policy("joe@sub.example.org")
        self.assertEqual("reject", policy['p'])
        self.assertEqual("sub.example.org", policy['domain'])
        self.assertEqual("example.org", policy['source'])

    async def test_no_policy(self):
        self.assertIsNone(
            await self.dmarc().get_policy("joe@example.invalid"))

    async def test_ill_formed_record_is_ignored(self):
        self.assertIsNone(
            await self.dmarc().get_policy("joe@invalid.example"))

    async def test_should_be_signed(self):
        res = await self.dmarc().should_be_signed("joe@example.com")
        self.assertEqual({'shouldBeSigned': True, 'sdid': ["example.com"]},
                         res)

    async def test_should_be_signed_subdomain(self):
        res = await self.dmarc().should_be_signed("foo@sub.example.com")
        self.assertEqual(
            {'shouldBeSigned': True,
             'sdid': ["sub.example.com", "example.com"]},
            res)

    async def test_needed_policy(self):
        dmarc = self.dmarc(
            policy_dmarc_should_be_signed_needed_policy="quarantine")
        self.assertFalse(
            (await dmarc.should_be_signed("joe@example.com"))
            ['shouldBeSigned'])
        self.assertTrue(
            (await dmarc.should_be_signed("joe@example.org"))
            ['shouldBeSigned'])

        dmarc = self.dmarc(
            policy_dmarc_should_be_signed_needed_policy="reject")
        self.assertFalse(
            (await dmarc.should_be_signed("joe@example.org"))
            ['shouldBeSigned'])
        self.assertTrue(
            (await dmarc.should_be_signed("joe@example.net"))
            ['shouldBeSigned'])

    async def test_dns_error_is_ignored(self):
        async def query_txt(name):
            return txt_result(None, RCODE.ServFail)
        dmarc = DMARC(query_txt)
        with self.assertLogs('dkimverifier.dmarc', 'ERROR'):
            res = await dmarc.should_be_signed("joe@example.com")
        self.assertEqual({'shouldBeSigned': False, 'sdid': []}, res)
        with self.assertRaises(InternalError):
            await dmarc.get_policy("joe@example.com")


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
