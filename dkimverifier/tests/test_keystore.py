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

from dkimverifier.dnsplug import RCODE, txt_result
from dkimverifier.errors import InternalError, SigError
from dkimverifier.keystore import KEY_STORING, STORAGE_KEY, KeyDb, KeyStore
from dkimverifier.prefs import Preferences
from dkimverifier.storage import MemoryStorage
from dkimverifier.tests.dnsstub import RECORDS, create_query_txt


class FailingStorage(MemoryStorage):

    async def set(self, key, value):
        raise OSError("disk full")


class TestKeyDb(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.storage = MemoryStorage()
        self.key_db = KeyDb(self.storage)

    async def test_store_and_fetch(self):
        self.assertIsNone(await self.key_db.fetch("example.com", "sel"))
        await self.key_db.store("example.com", "sel", "v=DKIM1; p=abc", False)
        self.assertEqual({'key': "v=DKIM1; p=abc", 'secure': False},
                         await self.key_db.fetch("example.com", "sel"))
        self.assertIsNone(await self.key_db.fetch("example.com", "other"))

        keys = await self.key_db.get_keys()
        self.assertEqual(1, len(keys))
        self.assertEqual(1, keys[0]['id'])
        self.assertEqual(keys[0]['insertedAt'], keys[0]['lastUsedAt'])

    async def test_persisted(self):
        await self.key_db.store("example.com", "sel", "v=DKIM1; p=abc", True)
        stored = await self.storage.get(STORAGE_KEY)
        self.assertEqual(1, stored['maxId'])

        key_db = KeyDb(self.storage)
        self.assertEqual({'key': "v=DKIM1; p=abc", 'secure': True},
                         await key_db.fetch("example.com", "sel"))
        await key_db.store("example.org", "sel", "v=DKIM1; p=def", False)
        self.assertEqual(2, (await key_db.get_keys())[1]['id'])

    async def test_mark_as_secure(self):
        await self.key_db.store("example.com", "sel", "v=DKIM1; p=abc", False)
        await self.key_db.mark_as_secure("example.com", "sel")
        self.assertTrue(
            (await self.key_db.fetch("example.com", "sel"))['secure'])
        with self.assertRaises(KeyError):
            await self.key_db.mark_as_secure("example.com", "other")

    async def test_update(self):
        await self.key_db.store("example.com", "sel", "v=DKIM1; p=abc", False)
        await self.key_db.update(1, 'selector', "sel2")
        self.assertIsNotNone(await self.key_db.fetch("example.com", "sel2"))
        with self.assertRaises(ValueError):
            await self.key_db.update(1, 'secure', "yes")
        with self.assertRaises(ValueError):
            await self.key_db.update(1, 'id', 5)
        with self.assertRaises(KeyError):
            await self.key_db.update(2, 'selector', "sel3")

    async def test_delete(self):
        await self.key_db.store("example.com", "a", "v=DKIM1; p=abc", False)
        await self.key_db.store("example.com", "b", "v=DKIM1; p=def", False)
        await self.key_db.delete(1)
        self.assertIsNone(await self.key_db.fetch("example.com", "a"))
        await self.key_db.delete(None, "example.com", "b")
        self.assertEqual([], await self.key_db.get_keys())
        with self.assertRaises(KeyError):
            await self.key_db.delete(1)

    async def test_clear(self):
        await self.key_db.store("example.com", "a", "v=DKIM1; p=abc", False)
        await self.key_db.clear()
        self.assertIsNone(await self.storage.get(STORAGE_KEY))
        self.assertEqual([], await self.key_db.get_keys())

    async def test_fetch_survives_failing_storage(self):
        storage = FailingStorage({STORAGE_KEY: {'maxId': 1, 'keys': [{
            'id': 1, 'sdid': "example.com", 'selector': "sel",
            'key': "v=DKIM1; p=abc", 'secure': False,
            'insertedAt': "2020-01-01", 'lastUsedAt': "2020-01-01",
            }]}})
        key_db = KeyDb(storage)
        with self.assertLogs('dkimverifier.keystore', 'CRITICAL'):
            key = await key_db.fetch("example.com", "sel")
        self.assertEqual("v=DKIM1; p=abc", key['key'])


class TestKeyStore(unittest.IsolatedAsyncioTestCase):

    name = "brisbane._domainkey.example.com"

    def key_store(self, key_storing, records=None, calls=None,
                  storage=None):
        self.key_db = KeyDb(storage or MemoryStorage())
        return KeyStore(create_query_txt(records, calls), self.key_db,
                        Preferences(key_storing=key_storing))

    async def test_disabled(self):
        calls = []
        key_store = self.key_store(KEY_STORING.DISABLED, calls=calls)
        key = await key_store.fetch_key("example.com", "brisbane")
        self.assertEqual({'key': RECORDS[self.name], 'secure': False}, key)
        self.assertEqual([self.name], calls)
        self.assertEqual([], await self.key_db.get_keys())

    async def test_no_key_db(self):
        key_store = KeyStore(create_query_txt(), None,
                             Preferences(key_storing=KEY_STORING.STORE))
        with self.assertRaises(InternalError):
            await key_store.fetch_key("example.com", "brisbane")

    async def test_store(self):
        calls = []
        key_store = self.key_store(KEY_STORING.STORE, calls=calls)
        await key_store.fetch_key("example.com", "brisbane")
        key = await key_store.fetch_key("example.com", "brisbane")
        self.assertEqual(RECORDS[self.name], key['key'])
        # the second key comes from the key database
        self.assertEqual([self.name], calls)

    async def test_store_failure_is_ignored(self):
        key_store = self.key_store(KEY_STORING.STORE,
                                   storage=FailingStorage())
        with self.assertLogs('dkimverifier.keystore', 'CRITICAL'):
            key = await key_store.fetch_key("example.com", "brisbane")
        self.assertEqual(RECORDS[self.name], key['key'])

    async def test_compare(self):
        records = dict(RECORDS)
        key_store = self.key_store(KEY_STORING.COMPARE, records)
        await key_store.fetch_key("example.com", "brisbane")
        await self.key_db.mark_as_secure("example.com", "brisbane")
        key = await key_store.fetch_key("example.com", "brisbane")
        self.assertTrue(key['secure'])

        records[self.name] = "v=DKIM1; p=changed"
        try:
            await key_store.fetch_key("example.com", "brisbane")
        except SigError as x:
            self.assertEqual("DKIM_POLICYERROR_KEYMISMATCH", x.error_type)
        else:
            self.fail("no SigError raised")

    async def test_no_key(self):
        key_store = self.key_store(KEY_STORING.DISABLED)
        try:
            await key_store.fetch_key("example.com", "missing")
        except SigError as x:
            self.assertEqual("DKIM_SIGERROR_NOKEY", x.error_type)
        else:
            self.fail("no SigError raised")

    async def test_dns_errors(self):
        async def servfail(name):
            return txt_result(None, RCODE.ServFail)

        async def bogus(name):
            return txt_result(None, bogus=True)

        for query_txt, error_type in (
                (servfail, "DKIM_DNSERROR_SERVER_ERROR"),
                (bogus, "DKIM_DNSERROR_DNSSEC_BOGUS")):
            try:
                await KeyStore(query_txt).fetch_key("example.com", "sel")
            except InternalError as x:
                self.assertEqual(error_type, x.error_type)
            else:
                self.fail("no InternalError raised")

    async def test_secure_answer(self):
        async def query_txt(name):
            return txt_result(["v=DKIM1; p=abc"], secure=True)
        key = await KeyStore(query_txt).fetch_key("example.com", "sel")
        self.assertTrue(key['secure'])


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
