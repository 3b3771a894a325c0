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

"""Policy checks applied to a single DKIM signature."""

import logging

from dkimverifier.errors import SigError
from dkimverifier.msgparser import parse_reply_to_header
from dkimverifier.prefs import UnsignedHeadersMode, make_warning
from dkimverifier.util import (
    addr_is_in_domain,
    domain_is_in_domain,
    string_ends_with,
    string_equal,
    )

__all__ = [
    'DESIRED_HEADERS',
    'RECOMMENDED_HEADERS',
    'REQUIRED_HEADERS',
    'check_headers_signed',
    'check_sdid',
    ]

log = logging.getLogger(__name__)

# Mostly based on RFC 6376 section 5.4.
REQUIRED_HEADERS = ("From", "Subject")
RECOMMENDED_HEADERS = (
    "Date", "To", "Cc", "Resent-Date", "Resent-From", "Resent-To",
    "Resent-Cc", "In-Reply-To", "References", "List-Id", "List-Help",
    "List-Unsubscribe", "List-Subscribe", "List-Post", "List-Owner",
    "List-Archive")
DESIRED_HEADERS = (
    "Message-ID", "Sender", "MIME-Version", "Content-Transfer-Encoding",
    "Content-Disposition", "Content-ID", "Content-Description")


def check_sdid(allowed_sdids, from_, sdid, auid, warnings, prefs):
    """Check the SDID and AUID of a signature against the From address.

    @param allowed_sdids: SDIDs allowed by the sign rules (may be empty)
    @param from_: address of the From header
    @param sdid: d= of the signature
    @param auid: i= of the signature
    @param warnings: list warnings are appended to
    @param prefs: L{Preferences}
    @raise SigError: DKIM_POLICYERROR_WRONG_SDID
    """
    if allowed_sdids:
        if prefs.policy_sign_rules_sdid_allow_sub_domains:
            match = any(domain_is_in_domain(sdid, e) for e in allowed_sdids)
        else:
            match = any(string_equal(sdid, e) for e in allowed_sdids)
        if not match:
            params = [list(allowed_sdids)]
            if prefs.policy_sign_rules_error_wrong_sdid_as_warning:
                warnings.append(make_warning(
                    "DKIM_POLICYERROR_WRONG_SDID", params))
                log.debug("Warning: DKIM_POLICYERROR_WRONG_SDID")
            else:
                raise SigError("DKIM_POLICYERROR_WRONG_SDID", params)
        return

    if not addr_is_in_domain(from_, sdid):
        warnings.append(make_warning("DKIM_SIGWARNING_FROM_NOT_IN_SDID"))
        log.debug("Warning: DKIM_SIGWARNING_FROM_NOT_IN_SDID")
    elif not (string_ends_with(from_, auid) if auid.startswith("@")
              else string_equal(from_, auid)):
        warnings.append(make_warning("DKIM_SIGWARNING_FROM_NOT_IN_AUID"))
        log.debug("Warning: DKIM_SIGWARNING_FROM_NOT_IN_AUID")


def check_headers_signed(header_fields, signature, prefs):
    """Check that the signed headers satisfy the policy.

    Warns about unsigned headers depending on the configured mode and
    detects unsigned copies added to a signed header.  Only the headers
    listed in the three tiers are considered, as adding e.g. Received
    headers is normal.

    Must be called after the body length was checked, as a partially signed
    body makes Content-Type a required header.

    @param header_fields: parsed header of the message
    @param signature: L{DkimSignatureHeader}; warnings are appended to it
    @param prefs: L{Preferences}
    @raise SigError: DKIM_POLICYERROR_UNSIGNED_HEADER_ADDED
    """
    required = list(REQUIRED_HEADERS)
    recommended = list(RECOMMENDED_HEADERS)
    desired = list(DESIRED_HEADERS)

    # Reply-To is only desired if it points into the signing domain.
    reply_to = header_fields.get("reply-to")
    reply_to_address = None
    if reply_to:
        reply_to_address = parse_reply_to_header(reply_to[0])
    if reply_to_address and addr_is_in_domain(reply_to_address, signature.d):
        desired.append("Reply-To")
    else:
        recommended.append("Reply-To")

    # With a partially signed body, a changed Content-Type can show
    # completely different content.
    if any(w['name'] == "DKIM_SIGWARNING_SMALL_L" for w in signature.warnings):
        required.append("Content-Type")
    elif signature.l is not None:
        recommended.append("Content-Type")
    else:
        desired.append("Content-Type")

    mode = prefs.dkim_unsigned_headers_warning_mode

    def check_signed_header(header, warn_if_unsigned):
        name = header.lower()
        signed_count = signature.h_array.count(name)
        present_count = len(header_fields.get(name, ()))
        if 0 < signed_count < present_count:
            raise SigError("DKIM_POLICYERROR_UNSIGNED_HEADER_ADDED", [header])
        if warn_if_unsigned and signed_count < present_count:
            signature.warnings.append(make_warning(
                "DKIM_SIGWARNING_UNSIGNED_HEADER", [header]))
            log.debug("Warning: DKIM_SIGWARNING_UNSIGNED_HEADER (%s)" % header)

    for header in required:
        check_signed_header(header, mode >= UnsignedHeadersMode.RELAXED)
    for header in recommended:
        check_signed_header(header, mode >= UnsignedHeadersMode.RECOMMENDED)
    for header in desired:
        check_signed_header(header, mode >= UnsignedHeadersMode.STRICT)
