#!/usr/bin/env python

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
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

import argparse
import json
import logging
import sys

import dkimverifier

parser = argparse.ArgumentParser(
    description='Verify the DKIM signatures of an email message read from '
                'stdin and print the result as JSON.')
parser.add_argument('--prefs', metavar='FILE',
                    help='INI file with a [dkimverifier] section.')
parser.add_argument('--arh', action='store_true',
                    help='Read trusted Authentication-Results headers.')
parser.add_argument('--relaxed-arh', action='store_true',
                    help='Tolerate common errors in Authentication-Results '
                         'headers.')
parser.add_argument('--sign-rules', action='store_true',
                    help='Check the signatures against the sign rules.')
parser.add_argument('--dmarc', action='store_true',
                    help='Use the DMARC policy if no sign rule matches.')
parser.add_argument('--storage', metavar='FILE',
                    help='JSON file for stored keys, user sign rules and '
                         'results.')
parser.add_argument('-v', '--verbose', action='store_true',
                    help='Write debug output to stderr.')
args = parser.parse_args()

if args.prefs:
    prefs = dkimverifier.Preferences.from_file(args.prefs)
else:
    prefs = dkimverifier.Preferences()
if args.arh or args.relaxed_arh:
    prefs.arh_read = True
if args.relaxed_arh:
    prefs.arh_relaxed_parsing = True
if args.sign_rules or args.dmarc:
    prefs.policy_sign_rules_enable = True
if args.dmarc:
    prefs.policy_dmarc_should_be_signed_enable = True

storage = None
if args.storage:
    from dkimverifier.storage import JsonFileStorage
    storage = JsonFileStorage(args.storage)

if args.verbose:
    logging.basicConfig(stream=sys.stderr, level=logging.DEBUG)

message = sys.stdin.buffer.read()
result = dkimverifier.verify(message, prefs, storage)
print(json.dumps(result, indent=2, sort_keys=True))
if result['dkim'][0]['result'] == "SUCCESS":
    sys.exit(0)
sys.exit(1)
