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


"""Sign rules: which senders are expected to sign their messages, and with
which SDIDs.

A rule matches a From address if the address is in the rule's domain (or
the message's List-Id equals the rule's List-Id) and the address matches
the rule's address pattern.  If several rules match, the one with the
highest priority is used.
"""

import json
import logging
import pkgutil
import re

from dkimverifier.errors import InternalError
from dkimverifier.prefs import Preferences, make_warning
from dkimverifier.util import (
    Deferred,
    addr_is_in_domain,
    copy,
    domain_is_in_domain,
    get_base_domain_from_addr,
    string_equal,
    )

__all__ = [
    'AUTO_ADD_RULE_FOR',
    'PRIORITY',
    'SignRules',
    'TYPE',
    'glob',
    ]

log = logging.getLogger(__name__)

#: Storage key of the user rules.
STORAGE_KEY = "signRulesUser"


class TYPE:
    #: all messages must be signed
    ALL = 1
    NEUTRAL = 2
    #: invalid signatures are treated as no signature
    HIDEFAIL = 3


class PRIORITY:
    AUTOINSERT_RULE_ALL = 1100
    #: used for e-mail providers
    DEFAULT_RULE_ALL0 = 2000
    USERINSERT_RULE_HIDEFAIL = 2050
    DEFAULT_RULE_ALL = 2100
    #: used for different SDIDs of subdomains
    DEFAULT_RULE_ALL_2 = 2110
    DEFAULT_RULE_NEUTRAL = 2200
    USERINSERT_RULE_ALL = 3100
    USERINSERT_RULE_NEUTRAL = 3200


class AUTO_ADD_RULE_FOR:
    FROM_ADDRESS = 0
    SUB_DOMAIN = 1
    BASE_DOMAIN = 2


_TYPE_VALUES = (TYPE.ALL, TYPE.NEUTRAL, TYPE.HIDEFAIL)
_DEFAULT_PRIORITY = {
    TYPE.ALL: PRIORITY.USERINSERT_RULE_ALL,
    TYPE.NEUTRAL: PRIORITY.USERINSERT_RULE_NEUTRAL,
    TYPE.HIDEFAIL: PRIORITY.USERINSERT_RULE_HIDEFAIL,
    }
_REGEX_SPECIALS = re.compile(r"([.+?^${}()|\[\]\\])")


def glob(s, pattern):
    """Case insensitive match of s against a pattern in which the first "*"
    matches any string.

    >>> glob("foo@Example.com", "*@example.com")
    True
    >>> glob("foo@example.com", "bar@example.com")
    False
    """
    regexp = _REGEX_SPECIALS.sub(r"\\\1", pattern).replace("*", ".*", 1)
    return re.fullmatch(regexp, s, re.I) is not None


def load_default_rules():
    """Read the bundled default rules.

    @raise ValueError: a rule has an unknown type or priority
    """
    data = json.loads(pkgutil.get_data(
        'dkimverifier', 'data/signersDefault.json').decode('utf-8'))
    rules = []
    for rule in data['rules']:
        rule_type = getattr(TYPE, rule['ruletype'], None)
        if rule_type is None:
            raise ValueError("unknown rule type %s" % rule['ruletype'])
        priority = getattr(PRIORITY, rule['priority'], None)
        if priority is None:
            raise ValueError("unknown priority %s" % rule['priority'])
        rules.append({
            'domain': rule['domain'],
            'addr': rule['addr'],
            'sdid': rule['sdid'],
            'type': rule_type,
            'priority': priority,
        })
    return rules


class SignRules(object):
    """Default and user sign rules.

    @param storage: storage for the user rules (see
    L{dkimverifier.storage})
    @param prefs: L{Preferences}
    """

    def __init__(self, storage, prefs=None):
        self.storage = storage
        self.prefs = prefs or Preferences()
        self._default_rules = None
        self._user_rules = []
        self._user_rules_max_id = 0
        self._user_rules_loaded = Deferred(self._load_user_rules)

    async def _load_user_rules(self):
        stored = await self.storage.get(STORAGE_KEY)
        if stored is not None:
            self._user_rules_max_id = stored['maxId']
            self._user_rules = stored['rules']

    async def _store_user_rules(self):
        await self.storage.set(STORAGE_KEY, {
            'maxId': self._user_rules_max_id,
            'rules': self._user_rules,
        })

    async def get_default_rules(self):
        if self._default_rules is None:
            self._default_rules = load_default_rules()
        return self._default_rules

    async def get_user_rules(self):
        await self._user_rules_loaded.wait()
        return self._user_rules

    async def check_if_should_be_signed(self, from_, list_id=None,
                                        dmarc=None):
        """Get the sign policy for a From address.

        @param from_: address of the From header
        @param list_id: List-Id of the message
        @param dmarc: optional L{dkimverifier.dmarc.DMARC}, asked if no
        rule matches
        @return: dict with shouldBeSigned, sdid (list of allowed SDIDs),
        foundRule and hideFail
        """
        matched = []
        for rule in await self.get_user_rules():
            if not rule['enabled']:
                continue
            if not addr_is_in_domain(from_, rule['domain']) and (
                    not rule['listId'] or list_id != rule['listId']):
                continue
            if glob(from_, rule['addr']):
                matched.append(rule)
        if self.prefs.policy_sign_rules_check_default_rules:
            for rule in await self.get_default_rules():
                if (addr_is_in_domain(from_, rule['domain']) and
                        glob(from_, rule['addr'])):
                    matched.append(rule)

        if not matched:
            res = {
                'shouldBeSigned': False,
                'sdid': [],
                'foundRule': False,
                'hideFail': False,
            }
            if dmarc is not None:
                dmarc_res = await dmarc.should_be_signed(from_)
                res['shouldBeSigned'] = dmarc_res['shouldBeSigned']
                res['sdid'] = dmarc_res['sdid']
            return res

        rule = max(matched, key=lambda r: r['priority'])
        if rule['type'] == TYPE.ALL:
            should_be_signed, hide_fail = True, False
        elif rule['type'] == TYPE.NEUTRAL:
            should_be_signed, hide_fail = False, False
        elif rule['type'] == TYPE.HIDEFAIL:
            should_be_signed, hide_fail = False, True
        else:
            raise InternalError("unknown rule type %s" % rule['type'])
        return {
            'shouldBeSigned': should_be_signed,
            'sdid': rule['sdid'].split(),
            'foundRule': True,
            'hideFail': hide_fail,
        }

    def check_sdid(self, dkim_result, allowed_sdids):
        """Check the SDID of a result against the SDIDs allowed by a rule.

        @return: a new result
        """
        result = copy(dkim_result)
        if not allowed_sdids:
            return result
        sdid = dkim_result.get('sdid')
        if not sdid:
            # e.g. the signature could not be parsed
            log.debug("skipped SDID/AUID check, as at least one is undefined")
            return result

        # the allowed SDIDs are explicitly stated by the rule
        result['warnings'] = [
            w for w in result.get('warnings', [])
            if w['name'] not in ("DKIM_SIGWARNING_FROM_NOT_IN_SDID",
                                 "DKIM_SIGWARNING_FROM_NOT_IN_AUID")]

        if self.prefs.policy_sign_rules_sdid_allow_sub_domains:
            allowed = any(domain_is_in_domain(sdid, s) for s in allowed_sdids)
        else:
            allowed = any(string_equal(sdid, s) for s in allowed_sdids)
        if not allowed:
            if self.prefs.policy_sign_rules_error_wrong_sdid_as_warning:
                result['warnings'].append(make_warning(
                    "DKIM_POLICYERROR_WRONG_SDID", [allowed_sdids]))
                log.debug("Warning: DKIM_POLICYERROR_WRONG_SDID")
            else:
                return {
                    'version': "2.0",
                    'result': "PERMFAIL",
                    'errorType': "DKIM_POLICYERROR_WRONG_SDID",
                    'errorStrParams': list(allowed_sdids),
                }
        return result

    async def check(self, dkim_result, from_, list_id=None, is_outgoing=None,
                    dmarc=None):
        """Apply the sign rules to the result of one signature.

        @param dkim_result: a signature result
        @param from_: address of the From header
        @param list_id: List-Id of the message
        @param is_outgoing: optional coroutine function, true if the
        message was sent by the user
        @param dmarc: optional L{dkimverifier.dmarc.DMARC}
        @return: a new signature result
        """
        policy = await self.check_if_should_be_signed(from_, list_id, dmarc)
        log.debug("shouldBeSigned: %r" % policy)
        if dkim_result['result'] == "none":
            if policy['shouldBeSigned'] and not (
                    is_outgoing is not None and await is_outgoing()):
                return {
                    'version': "2.0",
                    'result': "PERMFAIL",
                    'errorType': "DKIM_POLICYERROR_MISSING_SIG",
                    'errorStrParams': policy['sdid'],
                    'hideFail': policy['hideFail'],
                }
            return copy(dkim_result)

        result = self.check_sdid(dkim_result, policy['sdid'])
        if policy['hideFail']:
            result['hideFail'] = True
        if not policy['foundRule']:
            try:
                await self._auto_add_rule(from_, dkim_result)
            except Exception:
                log.critical("Adding a sign rule automatically failed",
                             exc_info=True)
        return result

    async def _auto_add_rule(self, from_, dkim_result):
        if dkim_result['result'] != "SUCCESS":
            return
        if not self.prefs.policy_sign_rules_auto_add_rule_enable:
            return
        sdid = dkim_result.get('sdid')
        if not sdid or not dkim_result.get('auid'):
            raise InternalError("DKIM result has no sdid or auid")

        only_in_sdid = \
            self.prefs.policy_sign_rules_auto_add_rule_only_if_from_address_in_sdid
        if only_in_sdid and not addr_is_in_domain(from_, sdid):
            log.debug("from address is not in SDID")
            return

        if (await self.check_if_should_be_signed(from_))['foundRule']:
            return
        domain = None
        rule_for = self.prefs.policy_sign_rules_auto_add_rule_for
        if rule_for == AUTO_ADD_RULE_FOR.FROM_ADDRESS:
            addr = from_
        elif rule_for == AUTO_ADD_RULE_FOR.SUB_DOMAIN:
            addr = "*" + from_[from_.rfind("@"):]
        elif rule_for == AUTO_ADD_RULE_FOR.BASE_DOMAIN:
            domain = get_base_domain_from_addr(from_)
            addr = "*"
        else:
            raise InternalError("invalid signRules.autoAddRule.for")
        await self.add_rule(domain, None, addr, sdid, TYPE.ALL,
                            PRIORITY.AUTOINSERT_RULE_ALL)

    async def add_rule(self, domain, list_id, addr, sdid, rule_type,
                       priority=None, enabled=True):
        """Add a user rule.

        Without domain and List-Id, the rule is for the base domain of addr.
        Without priority, the default user priority of the type is used.

        @raise ValueError: unknown rule type
        """
        if rule_type not in _TYPE_VALUES:
            raise ValueError("unknown rule type %r" % (rule_type,))
        if not domain and not list_id:
            domain = get_base_domain_from_addr(addr)
        if priority is None:
            priority = _DEFAULT_PRIORITY[rule_type]

        await self._user_rules_loaded.wait()
        self._user_rules_max_id += 1
        self._user_rules.append({
            'id': self._user_rules_max_id,
            'domain': domain or "",
            'listId': list_id or "",
            'addr': addr,
            'sdid': sdid,
            'type': rule_type,
            'priority': priority,
            'enabled': enabled,
        })
        await self._store_user_rules()
        log.info("added sign rule for %s (%s)" % (addr, domain or list_id))

    async def add_exception(self, from_):
        """Add a neutral rule for an address, if none exists yet."""
        for rule in await self.get_user_rules():
            if (rule['enabled'] and
                    rule['type'] == TYPE.NEUTRAL and
                    rule['priority'] == PRIORITY.USERINSERT_RULE_NEUTRAL and
                    addr_is_in_domain(from_, rule['domain']) and
                    string_equal(from_, rule['addr'])):
                return
        await self.add_rule(None, None, from_, "", TYPE.NEUTRAL,
                            PRIORITY.USERINSERT_RULE_NEUTRAL)

    async def update_rule(self, id, property_name, new_value):
        """Set a property of a user rule.

        @raise KeyError: no rule with the id exists
        @raise ValueError: unknown property, or value of the wrong type
        """
        rules = await self.get_user_rules()
        rule = next((r for r in rules if r['id'] == id), None)
        if rule is None:
            raise KeyError("Can not update non existing rule with id %r" % id)
        if property_name in ("domain", "listId", "addr", "sdid"):
            ok = isinstance(new_value, str)
        elif property_name in ("type", "priority"):
            ok = isinstance(new_value, int) and not isinstance(new_value,
                                                               bool)
        elif property_name == "enabled":
            ok = isinstance(new_value, bool)
        else:
            raise ValueError(
                "Can not update unknown property %r" % property_name)
        if not ok:
            raise ValueError("Can not set %s to value %r with type %s" % (
                property_name, new_value, type(new_value).__name__))
        rule[property_name] = new_value
        await self._store_user_rules()

    async def delete_rule(self, id):
        """@raise KeyError: no rule with the id exists"""
        rules = await self.get_user_rules()
        for index, rule in enumerate(rules):
            if rule['id'] == id:
                break
        else:
            raise KeyError("Can not delete non existing rule with id %r" % id)
        del rules[index]
        await self._store_user_rules()

    async def clear_rules(self):
        self._user_rules_loaded.reset()
        self._user_rules = []
        self._user_rules_max_id = 0
        await self.storage.remove(STORAGE_KEY)
