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

import dkimverifier
from dkimverifier.authverifier import (
    STORAGE_KEY,
    AuthVerifier,
    dkim_result_v1_to_v2,
    migrate_auth_result,
    )
from dkimverifier.dmarc import DMARC
from dkimverifier.errors import InternalError
from dkimverifier.keystore import KeyStore
from dkimverifier.prefs import Preferences
from dkimverifier.signrules import SignRules
from dkimverifier.storage import MemoryStorage
from dkimverifier.tests.dnsstub import create_query_txt, read_test_data
from dkimverifier.verifier import Verifier

ARH = (b"Authentication-Results: mx.example.com;\r\n"
       b"  dkim=pass header.d=example.com header.a=rsa-sha256;\r\n"
       b"  spf=pass smtp.mailfrom=example.com\r\n")


class AuthVerifierTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.storage = MemoryStorage()
        self.prefs = Preferences()
        self.calls = []
        self.query_txt = create_query_txt(calls=self.calls)

    def auth_verifier(self, query_txt=None):
        query_txt = query_txt or self.query_txt
        return AuthVerifier(
            Verifier(KeyStore(query_txt, prefs=self.prefs), self.prefs),
            SignRules(self.storage, self.prefs),
            DMARC(query_txt, self.prefs),
            self.storage,
            self.prefs)

    async def verify(self, filename, message_id=None, prefix=b"",
                     is_outgoing=None):
        message = prefix + read_test_data(filename)
        return await self.auth_verifier().verify(message, message_id,
                                                 is_outgoing)


class TestVerify(AuthVerifierTestCase):

    async def test_signed_message(self):
        res = await self.verify("rfc6376-A.2.eml")
        self.assertEqual("3.0", res['version'])
        self.assertEqual(1, len(res['dkim']))
        self.assertEqual("SUCCESS", res['dkim'][0]['result'])
        self.assertEqual("example.com", res['dkim'][0]['sdid'])

    async def test_failed_signature(self):
        res = await self.verify("rfc6376-A.2-body_modified.eml")
        self.assertEqual("DKIM_SIGERROR_CORRUPT_BH",
                         res['dkim'][0]['errorType'])

    async def test_unsigned_message(self):
        res = await self.verify("fakePayPal.eml")
        self.assertEqual({'version': "3.0",
                          'dkim': [{'version': "2.0", 'result': "none"}]},
                         res)

    async def test_dkim_disabled(self):
        self.prefs.dkim_enable = False
        res = await self.verify("rfc6376-A.2.eml")
        self.assertEqual([{'version': "2.0", 'result': "none"}], res['dkim'])
        self.assertEqual([], self.calls)

    async def test_ill_formed_message(self):
        res = await self.auth_verifier().verify(
            b"To: suzie@example.net\r\n\r\nHi\r\n")
        self.assertEqual(
            {'version': "3.0",
             'dkim': [{'version': "2.0", 'result': "PERMFAIL",
                       'errorType': "DKIM_INTERNALERROR_INCORRECT_FROM"}]},
            res)


class TestSignRules(AuthVerifierTestCase):

    def setUp(self):
        AuthVerifierTestCase.setUp(self)
        self.prefs.policy_sign_rules_enable = True

    async def test_missing_signature(self):
        res = await self.verify("fakePayPal.eml")
        dkim = res['dkim'][0]
        self.assertEqual("PERMFAIL", dkim['result'])
        self.assertEqual("DKIM_POLICYERROR_MISSING_SIG", dkim['errorType'])
        self.assertEqual(["paypal.com"], dkim['errorStrParams'])

    async def test_outgoing_message(self):
        async def is_outgoing():
            return True
        res = await self.verify("fakePayPal.eml", is_outgoing=is_outgoing)
        self.assertEqual("none", res['dkim'][0]['result'])

    async def test_dmarc(self):
        self.prefs.policy_sign_rules_check_default_rules = False
        res = await self.verify("fakePayPal.eml")
        self.assertEqual("none", res['dkim'][0]['result'])
        self.assertNotIn("_dmarc.paypal.com", self.calls)

        self.prefs.policy_dmarc_should_be_signed_enable = True
        res = await self.verify("fakePayPal.eml")
        self.assertEqual("DKIM_POLICYERROR_MISSING_SIG",
                         res['dkim'][0]['errorType'])
        self.assertIn("_dmarc.paypal.com", self.calls)

    async def test_signed_message(self):
        res = await self.verify("rfc6376-A.2.eml")
        self.assertEqual("SUCCESS", res['dkim'][0]['result'])


class TestAuthenticationResults(AuthVerifierTestCase):

    def setUp(self):
        AuthVerifierTestCase.setUp(self)
        self.prefs.arh_read = True

    async def test_replace_result(self):
        res = await self.verify("rfc6376-A.2-body_modified.eml", prefix=ARH)
        self.assertEqual("3.1", res['version'])
        self.assertEqual(
            [{'version': "2.0", 'result': "SUCCESS", 'warnings': [],
              'sdid': "example.com", 'auid': "@example.com",
              'algorithmSignature': "rsa", 'algorithmHash': "sha256"}],
            res['dkim'])
        self.assertEqual(["pass"], [r['result'] for r in res['spf']])
        self.assertEqual([], self.calls)

    async def test_replaced_result_checked_against_sign_rules(self):
        self.prefs.policy_sign_rules_enable = True
        arh = (b"Authentication-Results: mx.example.com;\r\n"
               b"  dkim=pass header.d=evil.example\r\n")
        res = await self.verify("fakePayPal.eml", prefix=arh)
        self.assertEqual("DKIM_POLICYERROR_WRONG_SDID",
                         res['dkim'][0]['errorType'])

    async def test_keep_result(self):
        self.prefs.arh_replace_addon_result = False
        res = await self.verify("rfc6376-A.2-body_modified.eml", prefix=ARH)
        self.assertEqual("3.1", res['version'])
        self.assertEqual("DKIM_SIGERROR_CORRUPT_BH",
                         res['dkim'][0]['errorType'])
        self.assertEqual("SUCCESS", res['arh']['dkim'][0]['result'])
        self.assertEqual(["pass"], [r['result'] for r in res['spf']])

    async def test_no_dkim_in_header(self):
        arh = (b"Authentication-Results: mx.example.com;\r\n"
               b"  spf=fail smtp.mailfrom=example.com\r\n")
        res = await self.verify("rfc6376-A.2.eml", prefix=arh)
        self.assertEqual("SUCCESS", res['dkim'][0]['result'])
        self.assertEqual(["fail"], [r['result'] for r in res['spf']])


class TestSavedResults(AuthVerifierTestCase):

    def setUp(self):
        AuthVerifierTestCase.setUp(self)
        self.prefs.save_result = True

    async def test_save_and_load(self):
        res = await self.verify("rfc6376-A.2.eml", "<1@example.com>")
        stored = await self.storage.get(STORAGE_KEY)
        self.assertEqual({"<1@example.com>": res}, stored)

        self.calls[:] = []
        self.assertEqual(
            res, await self.verify("rfc6376-A.2.eml", "<1@example.com>"))
        self.assertEqual([], self.calls)

    async def test_saving_disabled(self):
        self.prefs.save_result = False
        await self.verify("rfc6376-A.2.eml", "<1@example.com>")
        self.assertIsNone(await self.storage.get(STORAGE_KEY))

    async def test_no_message_id(self):
        await self.verify("rfc6376-A.2.eml")
        self.assertIsNone(await self.storage.get(STORAGE_KEY))

    async def test_tempfail_is_not_saved(self):
        async def query_txt(name):
            raise InternalError("timeout", "DKIM_DNSERROR_SERVER_ERROR")
        res = await self.auth_verifier(query_txt).verify(
            read_test_data("rfc6376-A.2.eml"), "<1@example.com>")
        self.assertEqual("TEMPFAIL", res['dkim'][0]['result'])
        self.assertIsNone(await self.storage.get(STORAGE_KEY))

    async def test_reset(self):
        auth_verifier = self.auth_verifier()
        await self.verify("rfc6376-A.2.eml", "<1@example.com>")
        await self.verify("fakePayPal.eml", "<2@example.com>")
        await auth_verifier.reset_result("<1@example.com>")
        self.assertEqual(["<2@example.com>"],
                         list(await self.storage.get(STORAGE_KEY)))
        self.assertIsNone(
            await auth_verifier.load_auth_result("<1@example.com>"))

    async def test_load_version_1(self):
        await self.storage.set(STORAGE_KEY, {"<1@example.com>": {
            'version': "1.1",
            'result': "PERMFAIL",
            'SDID': "example.com",
            'selector': "brisbane",
            'errorType': "DKIM_POLICYERROR_WRONG_SDID",
            'shouldBeSignedBy': "paypal.com",
            'hideFail': False,
            }})
        res = await self.verify("rfc6376-A.2.eml", "<1@example.com>")
        self.assertEqual("3.0", res['version'])
        self.assertEqual(
            {'version': "2.0", 'result': "PERMFAIL", 'sdid': "example.com",
             'selector': "brisbane",
             'errorType': "DKIM_POLICYERROR_WRONG_SDID",
             'errorStrParams': ["paypal.com"], 'hideFail': False},
            res['dkim'][0])
        self.assertEqual([], self.calls)


class TestMigration(unittest.TestCase):

    def test_v1_warnings(self):
        res = dkim_result_v1_to_v2({
            'version': "1.0",
            'result': "SUCCESS",
            'SDID': "example.com",
            'warnings': ["DKIM_SIGWARNING_EXPIRED",
                         "DKIM_POLICYERROR_WRONG_SDID"],
            'shouldBeSignedBy': "example.org",
            })
        self.assertEqual(
            [{'name': "DKIM_SIGWARNING_EXPIRED"},
             {'name': "DKIM_POLICYERROR_WRONG_SDID",
              'params': ["example.org"]}],
            res['warnings'])

    def test_v2(self):
        saved = {
            'version': "2.0",
            'dkim': [{'version': "2.0", 'result': "SUCCESS",
                      'sdid': "example.com", 'warnings': [],
                      'res_num': 10, 'result_str': "Valid",
                      'favicon': "data:"}],
            'spf': [{'method': "spf", 'result': "pass"}],
            'dmarc': [],
            'arh': {'dkim': [{'version': "2.0", 'result': "none",
                              'res_num': 40}]},
            }
        self.assertEqual({
            'version': "3.0",
            'dkim': [{'version': "2.0", 'result': "SUCCESS",
                      'sdid': "example.com", 'warnings': []}],
            'spf': [{'method': "spf", 'result': "pass"}],
            'arh': {'dkim': [{'version': "2.0", 'result': "none"}]},
            }, migrate_auth_result(saved))

    def test_v3_is_unchanged(self):
        saved = {'version': "3.1", 'dkim': [], 'spf': [], 'dmarc': []}
        self.assertEqual(saved, migrate_auth_result(saved))

    def test_unknown_version(self):
        self.assertRaises(ValueError, migrate_auth_result,
                          {'version': "4.0", 'dkim': []})
        self.assertRaises(ValueError, migrate_auth_result, {'dkim': []})


class TestVerifyFunction(unittest.TestCase):

    def test_verify(self):
        res = dkimverifier.verify(read_test_data("rfc6376-A.2.eml"),
                                  query_txt=create_query_txt())
        self.assertEqual("SUCCESS", res['dkim'][0]['result'])

    def test_sign_rules(self):
        prefs = Preferences(policy_sign_rules_enable=True)
        res = dkimverifier.verify(read_test_data("fakePayPal.eml"), prefs,
                                  query_txt=create_query_txt())
        self.assertEqual("DKIM_POLICYERROR_MISSING_SIG",
                         res['dkim'][0]['errorType'])


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
