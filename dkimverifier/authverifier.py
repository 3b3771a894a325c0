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


"""Combined authentication result of a message.

The result is built from the trusted Authentication-Results header fields
and the own DKIM verification, checked against the sign rules, and
optionally saved per message.
"""

import logging
import re

from dkimverifier.arhverifier import get_arh_result
from dkimverifier.errors import InternalError
from dkimverifier.prefs import Preferences
from dkimverifier.util import copy, get_default_logger
from dkimverifier.verifier import create_msg, sort_signatures

__all__ = [
    'AuthVerifier',
    'dkim_result_v1_to_v2',
    'migrate_auth_result',
    ]

#: Storage key of the saved results.
STORAGE_KEY = "authResult"

#: Fields of a version 2 result that are only used for display.
_DISPLAY_FIELDS = ("res_num", "result_str", "warnings_str", "favicon",
                   "error_str")

_MAJOR_VERSION = re.compile(r"[0-9]+")


def dkim_result_v1_to_v2(result_v1):
    """Convert a flat version 1 DKIM result to a signature result."""
    result = {
        'version': "2.0",
        'result': result_v1['result'],
        'sdid': result_v1.get('SDID'),
        'selector': result_v1.get('selector'),
        'errorType': result_v1.get('errorType'),
        'hideFail': result_v1.get('hideFail'),
    }
    should_be_signed_by = result_v1.get('shouldBeSignedBy') or ""
    if result_v1.get('warnings'):
        warnings = []
        for name in result_v1['warnings']:
            if name == "DKIM_POLICYERROR_WRONG_SDID":
                warnings.append({'name': name, 'params': [should_be_signed_by]})
            else:
                warnings.append({'name': name})
        result['warnings'] = warnings
    if result_v1.get('errorType') in ("DKIM_POLICYERROR_WRONG_SDID",
                                      "DKIM_POLICYERROR_MISSING_SIG"):
        result['errorStrParams'] = [should_be_signed_by]
    return result


def _strip_display_fields(result):
    result = dict(result)
    for field in _DISPLAY_FIELDS:
        result.pop(field, None)
    return result


def migrate_auth_result(saved):
    """Bring a saved result of any known version to version 3.

    >>> migrate_auth_result({'version': "1.1", 'result': "none"})['dkim']
    [{'version': '2.0', 'result': 'none', 'sdid': None, 'selector': None, \
'errorType': None, 'hideFail': None}]

    @raise ValueError: the version is missing or unknown
    """
    m = _MAJOR_VERSION.match(saved.get('version', ""))
    if m is None:
        raise ValueError("No version found in AuthResult")
    major = m.group(0)
    if major == "1":
        return {
            'version': "3.0",
            'dkim': [dkim_result_v1_to_v2(saved)],
        }
    if major == "2":
        res = {
            'version': "3.0",
            'dkim': [_strip_display_fields(r) for r in saved['dkim']],
        }
        if saved.get('spf'):
            res['spf'] = saved['spf']
        if saved.get('dmarc'):
            res['dmarc'] = saved['dmarc']
        if saved.get('arh') and saved['arh'].get('dkim'):
            res['arh'] = {
                'dkim': [_strip_display_fields(r)
                         for r in saved['arh']['dkim']],
            }
        return res
    if major == "3":
        return saved
    raise ValueError("AuthResult result has wrong Version (%s)" %
                     saved['version'])


class AuthVerifier(object):
    """Authentication result of messages.

    @param verifier: L{dkimverifier.verifier.Verifier}
    @param sign_rules: L{dkimverifier.signrules.SignRules}, used if sign
    rules are enabled
    @param dmarc: L{dkimverifier.dmarc.DMARC}, used if DMARC is enabled
    @param storage: storage for saved results (see L{dkimverifier.storage})
    @param prefs: L{Preferences}
    @param logger: logger for debug output
    """

    def __init__(self, verifier, sign_rules=None, dmarc=None, storage=None,
                 prefs=None, logger=None):
        self.verifier = verifier
        self.sign_rules = sign_rules
        self.dmarc = dmarc
        self.storage = storage
        self.prefs = prefs or Preferences()
        if logger is None:
            logger = get_default_logger()
        self.logger = logger

    async def verify(self, message, message_id=None, is_outgoing=None):
        """Get the authentication result of a message.

        @param message: the raw message
        @param message_id: identifier the result is saved under
        @param is_outgoing: optional coroutine function, true if the
        message was sent by the user
        @return: a SavedAuthResult (version 3.x) with the DKIM results best
        first and the SPF/DMARC results of the ARH
        """
        saved = await self.load_auth_result(message_id)
        if saved is not None:
            return saved

        try:
            msg = create_msg(message)
        except InternalError as e:
            self.logger.error("Parsing of message failed: %s" % e)
            return {
                'version': "3.0",
                'dkim': [{
                    'version': "2.0",
                    'result': "PERMFAIL",
                    'errorType': e.error_type or
                    "DKIM_INTERNALERROR_INCORRECT_EMAIL_FORMAT",
                }],
            }
        from_ = msg['from']
        list_id = msg['list_id']

        arh_result = get_arh_result(msg['header_fields'], from_, self.prefs)
        if arh_result is None:
            saved = {'version': "3.0", 'dkim': []}
        elif self.prefs.arh_replace_addon_result:
            saved = arh_result
            await self._check_sign_rules(saved['dkim'], from_, list_id,
                                         is_outgoing)
            sort_signatures(saved['dkim'], from_, list_id)
        else:
            saved = {
                'version': "3.1",
                'dkim': [],
                'spf': arh_result['spf'],
                'dmarc': arh_result['dmarc'],
                'arh': {'dkim': arh_result['dkim']},
            }
            if 'bimiIndicator' in arh_result:
                saved['bimiIndicator'] = arh_result['bimiIndicator']

        if not saved['dkim']:
            if self.prefs.dkim_enable:
                dkim_result = await self.verifier.verify(msg)
                signatures = dkim_result['signatures']
                await self._check_sign_rules(signatures, from_, list_id,
                                             is_outgoing)
                sort_signatures(signatures, from_, list_id)
                saved['dkim'] = signatures
            else:
                saved['dkim'] = [{'version': "2.0", 'result': "none"}]

        try:
            await self.save_auth_result(message_id, saved)
        except Exception:
            self.logger.critical("Failed to store result", exc_info=True)
        self.logger.debug("authResult: %r" % saved)
        return saved

    async def _check_sign_rules(self, dkim_results, from_, list_id,
                                is_outgoing):
        if not self.prefs.policy_sign_rules_enable or self.sign_rules is None:
            return
        dmarc = None
        if self.prefs.policy_dmarc_should_be_signed_enable:
            dmarc = self.dmarc
        for i, result in enumerate(dkim_results):
            dkim_results[i] = await self.sign_rules.check(
                result, from_, list_id, is_outgoing, dmarc)

    def _saving_enabled(self, message_id):
        return (self.prefs.save_result and message_id is not None and
                self.storage is not None)

    async def save_auth_result(self, message_id, saved):
        """Save the result of a message.

        Results containing a TEMPFAIL are not saved.  None resets the
        saved result.
        """
        if not self._saving_enabled(message_id):
            return
        results = await self.storage.get(STORAGE_KEY) or {}
        if saved is None:
            self.logger.debug("reset AuthResult result")
            results.pop(message_id, None)
        elif any(r['result'] == "TEMPFAIL" for r in saved['dkim']):
            self.logger.debug(
                "result not saved because DKIM result is a TEMPFAIL")
            return
        else:
            self.logger.debug("save AuthResult result")
            results[message_id] = copy(saved)
        await self.storage.set(STORAGE_KEY, results)

    async def load_auth_result(self, message_id):
        """Load the saved result of a message, migrated to version 3.

        @return: the result, or None if nothing is saved
        """
        if not self._saving_enabled(message_id):
            return None
        results = await self.storage.get(STORAGE_KEY) or {}
        saved = results.get(message_id)
        if not saved:
            return None
        self.logger.debug("AuthResult result found: %r" % saved)
        return migrate_auth_result(saved)

    async def reset_result(self, message_id):
        await self.save_auth_result(message_id, None)
