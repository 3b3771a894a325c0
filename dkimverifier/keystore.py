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

"""Retrieval of DKIM keys from DNS, with optional local key storage."""

import logging

from dkimverifier.dnsplug import RCODE
from dkimverifier.errors import InternalError, SigError
from dkimverifier.prefs import Preferences
from dkimverifier.util import Deferred, date_to_string

__all__ = [
    'KEY_STORING',
    'KeyDb',
    'KeyStore',
    ]

log = logging.getLogger(__name__)

#: Storage key of the stored keys.
STORAGE_KEY = "keyStore"


class KEY_STORING:
    DISABLED = 0
    STORE = 1
    COMPARE = 2


class KeyDb(object):
    """Stored DKIM keys.

    Each key is a dict with the fields id, sdid, selector, key, secure,
    insertedAt and lastUsedAt.  The whole collection is loaded once and
    written back completely on every change, so concurrent writers can
    lose updates.
    """

    #: property name -> required type, for update()
    _PROPERTY_TYPES = {
        'sdid': str,
        'selector': str,
        'key': str,
        'insertedAt': str,
        'lastUsedAt': str,
        'secure': bool,
        }

    def __init__(self, storage):
        self.storage = storage
        self._max_id = 0
        self._keys = []
        self._loaded = Deferred(self._load)

    async def _load(self):
        key_store = await self.storage.get(STORAGE_KEY)
        if key_store is not None:
            self._max_id = key_store['maxId']
            self._keys = key_store['keys']

    async def _store(self):
        await self.storage.set(STORAGE_KEY, {
            'maxId': self._max_id,
            'keys': self._keys,
        })

    def _find(self, sdid, selector):
        for key in self._keys:
            if key['sdid'] == sdid and key['selector'] == selector:
                return key
        return None

    async def get_keys(self):
        await self._loaded.wait()
        return self._keys

    async def fetch(self, sdid, selector):
        """Get a stored key.

        @return: dict with "key" and "secure", or None
        """
        await self._loaded.wait()
        stored = self._find(sdid, selector)
        if stored is None:
            return None
        stored['lastUsedAt'] = date_to_string()
        try:
            await self._store()
        except Exception:
            log.critical("Storing keys failed", exc_info=True)
        log.debug("got key from storage")
        return {'key': stored['key'], 'secure': stored['secure']}

    async def store(self, sdid, selector, key, secure):
        await self._loaded.wait()
        today = date_to_string()
        self._max_id += 1
        self._keys.append({
            'id': self._max_id,
            'sdid': sdid,
            'selector': selector,
            'key': key,
            'secure': secure,
            'insertedAt': today,
            'lastUsedAt': today,
        })
        await self._store()
        log.debug("inserted key into storage")

    async def mark_as_secure(self, sdid, selector):
        await self._loaded.wait()
        stored = self._find(sdid, selector)
        if stored is None:
            raise KeyError("Can not update non existing key (%s, %s)" % (
                sdid, selector))
        stored['secure'] = True
        await self._store()
        log.debug("Marked key (%s, %s) to be secure" % (sdid, selector))

    async def update(self, id, property_name, new_value):
        await self._loaded.wait()
        key = next((k for k in self._keys if k['id'] == id), None)
        if key is None:
            raise KeyError("Can not update non existing key with id %r" % id)
        try:
            expected = self._PROPERTY_TYPES[property_name]
        except KeyError:
            raise ValueError(
                "Can not update unknown property %r" % property_name)
        if not isinstance(new_value, expected):
            raise ValueError("Can not set %s to value %r with type %s" % (
                property_name, new_value, type(new_value).__name__))
        key[property_name] = new_value
        await self._store()

    async def delete(self, id, sdid=None, selector=None):
        """Delete a key by id, or by sdid and selector if id is None."""
        await self._loaded.wait()
        for index, key in enumerate(self._keys):
            if id is None:
                if key['sdid'] == sdid and key['selector'] == selector:
                    break
            elif key['id'] == id:
                break
        else:
            raise KeyError("Can not delete non existing key with id %r" % id)
        deleted = self._keys.pop(index)
        await self._store()
        log.debug("deleted key (%s, %s) from storage" % (
            deleted['sdid'], deleted['selector']))

    async def clear(self):
        self._loaded.reset()
        self._keys = []
        self._max_id = 0
        await self.storage.remove(STORAGE_KEY)


class KeyStore(object):
    """Fetches DKIM keys.

    @param query_txt: coroutine function returning a TXT result dict (see
    L{dkimverifier.dnsplug})
    @param key_db: L{KeyDb}, required if keys are stored
    @param prefs: L{Preferences}
    """

    def __init__(self, query_txt, key_db=None, prefs=None):
        self.query_txt = query_txt
        self.key_db = key_db
        self.prefs = prefs or Preferences()

    async def fetch_key(self, sdid, selector):
        """Get the key record for a signature.

        @return: dict with "key" (the TXT record) and "secure"
        @raise SigError: no key exists, or it differs from the stored one
        @raise InternalError: the DNS query failed
        """
        mode = self.prefs.key_storing
        if mode == KEY_STORING.DISABLED:
            return await self._get_key_from_dns(sdid, selector)
        if self.key_db is None:
            raise InternalError("key storing requires a key database")

        if mode == KEY_STORING.STORE:
            key = await self.key_db.fetch(sdid, selector)
            if key:
                return key
            key = await self._get_key_from_dns(sdid, selector)
            await self._store_key(sdid, selector, key)
            return key
        elif mode == KEY_STORING.COMPARE:
            key_stored = await self.key_db.fetch(sdid, selector)
            key_dns = await self._get_key_from_dns(sdid, selector)
            if key_stored:
                if key_stored['key'] != key_dns['key']:
                    raise SigError("DKIM_POLICYERROR_KEYMISMATCH")
                key_dns['secure'] = key_dns['secure'] or key_stored['secure']
            else:
                await self._store_key(sdid, selector, key_dns)
            return key_dns
        raise InternalError("invalid key_storing setting %r" % mode)

    async def _store_key(self, sdid, selector, key):
        try:
            await self.key_db.store(sdid, selector, key['key'], key['secure'])
        except Exception:
            log.critical("Storing keys failed", exc_info=True)

    async def _get_key_from_dns(self, sdid, selector):
        res = await self.query_txt("%s._domainkey.%s" % (selector, sdid))
        log.debug("dns result: %r" % (res,))

        if res.get('bogus'):
            raise InternalError(None, "DKIM_DNSERROR_DNSSEC_BOGUS")
        if res['rcode'] not in (RCODE.NoError, RCODE.NXDomain):
            log.info("DNS query failed with result: %r" % (res,))
            raise InternalError("rcode: %s" % res['rcode'],
                                "DKIM_DNSERROR_SERVER_ERROR")
        if not res['data'] or res['data'][0] == "":
            raise SigError("DKIM_SIGERROR_NOKEY")

        return {
            'key': res['data'][0],
            'secure': bool(res.get('secure')),
        }
