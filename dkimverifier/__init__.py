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


"""DKIM verification (RFC 6376) for received e-mail, combined with
Authentication-Results header fields (RFC 8601), sign rules and DMARC.

The simplest use is L{verify} with a raw message::

    result = dkimverifier.verify(open("mail.eml", "rb").read())
    print(result['dkim'][0]['result'])
"""

import asyncio

from dkimverifier.authverifier import AuthVerifier
from dkimverifier.dmarc import DMARC
from dkimverifier.dnsplug import get_resolver
from dkimverifier.errors import (
    ArhParseError,
    DKIMException,
    InternalError,
    SigError,
    )
from dkimverifier.keystore import KeyDb, KeyStore
from dkimverifier.prefs import Preferences
from dkimverifier.signrules import SignRules
from dkimverifier.storage import MemoryStorage
from dkimverifier.util import get_default_logger
from dkimverifier.verifier import Verifier, create_msg

__all__ = [
    'ArhParseError',
    'AuthVerifier',
    'DKIMException',
    'DMARC',
    'InternalError',
    'KeyDb',
    'KeyStore',
    'Preferences',
    'SigError',
    'SignRules',
    'Verifier',
    'create_msg',
    'get_default_logger',
    'verify',
    'verify_async',
    ]


def create_auth_verifier(prefs=None, storage=None, query_txt=None,
                         logger=None):
    """Wire up an L{AuthVerifier} with all its parts.

    @param prefs: L{Preferences}
    @param storage: storage for keys, sign rules and results (default: in
    memory)
    @param query_txt: coroutine function for TXT lookups (default: the
    resolver selected by the preferences)
    @param logger: a logger to which debug info will be written
    """
    prefs = prefs or Preferences()
    if storage is None:
        storage = MemoryStorage()
    if query_txt is None:
        query_txt = get_resolver(prefs).txt
    key_store = KeyStore(query_txt, KeyDb(storage), prefs)
    return AuthVerifier(
        Verifier(key_store, prefs, logger),
        SignRules(storage, prefs),
        DMARC(query_txt, prefs),
        storage,
        prefs,
        logger)


async def verify_async(message, prefs=None, storage=None, query_txt=None,
                       logger=None, message_id=None):
    """Get the authentication result of a message.

    @param message: the raw message (bytes, or str decoded as latin-1)
    @return: the authentication result; its "dkim" list holds the results
    of the DKIM signatures, best first
    """
    auth_verifier = create_auth_verifier(prefs, storage, query_txt, logger)
    return await auth_verifier.verify(message, message_id)


def verify(message, prefs=None, storage=None, query_txt=None, logger=None,
           message_id=None):
    """Synchronous version of L{verify_async}."""
    return asyncio.run(verify_async(message, prefs, storage, query_txt,
                                    logger, message_id))
