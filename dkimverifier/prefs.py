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

"""Preferences and the error/warning/ignore switch used by policy checks."""

import configparser
import enum
import logging

from dkimverifier.errors import InternalError, SigError

__all__ = [
    'DEFAULTS',
    'Preferences',
    'TreatAs',
    'UnsignedHeadersMode',
    'apply_policy',
    'make_warning',
    ]

log = logging.getLogger(__name__)


class TreatAs(enum.IntEnum):
    """How a policy-gated finding is handled."""
    ERROR = 0
    WARNING = 1
    IGNORE = 2


class UnsignedHeadersMode(enum.IntEnum):
    """Which unsigned headers produce DKIM_SIGWARNING_UNSIGNED_HEADER."""
    RELAXED = 10
    RECOMMENDED = 20
    STRICT = 30


#: Default value of every known preference.  The type of the default is
#: the type a preference must have.
DEFAULTS = {
    # DKIM verification
    'dkim_enable': True,
    'dkim_unsigned_headers_warning_mode': int(UnsignedHeadersMode.RECOMMENDED),
    'error_illformed_i_treat_as': int(TreatAs.WARNING),
    'error_illformed_s_treat_as': int(TreatAs.WARNING),
    'error_policy_key_insecure_treat_as': int(TreatAs.IGNORE),
    'error_key_testmode_ignore': False,
    'error_algorithm_rsa_sha1_treat_as': int(TreatAs.WARNING),
    'error_algorithm_rsa_weak_key_length_treat_as': int(TreatAs.IGNORE),
    'error_content_type_charset_added_quotes_treat_as': int(TreatAs.WARNING),
    'error_sanitize_subject': False,
    # key storing: 0 disabled, 1 store, 2 compare
    'key_storing': 0,
    'save_result': False,
    # Authentication-Results header
    'arh_read': False,
    'arh_replace_addon_result': True,
    'arh_relaxed_parsing': False,
    'arh_allowed_authserv': "",
    # sign rules
    'policy_sign_rules_enable': False,
    'policy_sign_rules_check_default_rules': True,
    'policy_sign_rules_auto_add_rule_enable': False,
    'policy_sign_rules_auto_add_rule_only_if_from_address_in_sdid': True,
    'policy_sign_rules_auto_add_rule_for': 0,
    'policy_sign_rules_sdid_allow_sub_domains': True,
    'policy_sign_rules_error_wrong_sdid_as_warning': False,
    # DMARC
    'policy_dmarc_should_be_signed_enable': False,
    'policy_dmarc_should_be_signed_needed_policy': "none",
    # DNS
    'dns_resolver': "aiodns",
    'dns_nameserver': "",
    'dns_timeout': 5,
    }


class Preferences(object):
    """Typed access to the preferences.

    Every preference is an attribute.  Unknown names and values of the
    wrong type are rejected with a ValueError.

    >>> p = Preferences(key_storing=1)
    >>> p.key_storing, p.dkim_enable
    (1, True)
    """

    def __init__(self, **overrides):
        self.__dict__['_values'] = dict(DEFAULTS)
        for name, value in overrides.items():
            self.set(name, value)

    @classmethod
    def from_dict(cls, values):
        return cls(**values)

    @classmethod
    def from_file(cls, path, section='dkimverifier'):
        """Read preferences from an INI file.

        Values are converted to the type of the default value.
        """
        parser = configparser.ConfigParser()
        if not parser.read(path):
            raise ValueError("can not read preferences file %s" % path)
        prefs = cls()
        if not parser.has_section(section):
            return prefs
        for name in parser.options(section):
            default = prefs._default(name)
            if isinstance(default, bool):
                value = parser.getboolean(section, name)
            elif isinstance(default, int):
                value = parser.getint(section, name)
            else:
                value = parser.get(section, name)
            prefs.set(name, value)
        return prefs

    @staticmethod
    def _default(name):
        try:
            return DEFAULTS[name]
        except KeyError:
            raise ValueError("unknown preference %s" % name)

    def set(self, name, value):
        default = self._default(name)
        if isinstance(default, bool):
            ok = isinstance(value, bool)
        elif isinstance(default, int):
            ok = isinstance(value, int) and not isinstance(value, bool)
        else:
            ok = isinstance(value, str)
        if not ok:
            raise ValueError("preference %s must be of type %s, got %r" % (
                name, type(default).__name__, value))
        self._values[name] = value

    def get(self, name):
        self._default(name)
        return self._values[name]

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(name)

    def __setattr__(self, name, value):
        self.set(name, value)

    def __repr__(self):
        changed = dict((k, v) for k, v in self._values.items()
                       if DEFAULTS[k] != v)
        return "Preferences(%r)" % changed


def make_warning(name, params=None):
    """Create a warning object for a result."""
    warning = {'name': name}
    if params is not None:
        warning['params'] = list(params)
    return warning


def apply_policy(treat_as, error_type, warnings, params=None):
    """Handle a policy-gated finding.

    @param treat_as: L{TreatAs} value configured for the finding
    @param error_type: error/warning identifier
    @param warnings: list the warning is appended to
    @param params: optional parameters of the error/warning
    @raise SigError: if treat_as is L{TreatAs.ERROR}
    @raise InternalError: if treat_as is not a valid value
    """
    try:
        treat_as = TreatAs(treat_as)
    except ValueError:
        raise InternalError("invalid treatAs value %r for %s" % (
            treat_as, error_type))
    if treat_as == TreatAs.ERROR:
        raise SigError(error_type, params)
    elif treat_as == TreatAs.WARNING:
        warnings.append(make_warning(error_type, params))
        log.debug("Warning: %s" % error_type)
