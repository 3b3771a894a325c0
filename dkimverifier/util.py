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

import asyncio
import copy as _copy
import datetime
import logging

import tldextract

__all__ = [
    'Deferred',
    'addr_is_in_domain',
    'addr_is_in_domain2',
    'copy',
    'date_to_string',
    'domain_is_in_domain',
    'get_base_domain',
    'get_base_domain_from_addr',
    'get_default_logger',
    'get_domain_from_addr',
    'string_ends_with',
    'string_equal',
    ]

# Only the bundled public suffix snapshot is used; no list is fetched.
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())


def get_default_logger():
    """Get the default dkimverifier logger."""
    logger = logging.getLogger('dkimverifier')
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def string_ends_with(s, suffix):
    """Case insensitive suffix test.

    >>> string_ends_with("foo@Example.com", "example.COM")
    True
    """
    return s.lower().endswith(suffix.lower())


def string_equal(a, b):
    """Case insensitive comparison.

    >>> string_equal("Example.com", "example.COM")
    True
    """
    return a.lower() == b.lower()


def get_domain_from_addr(addr):
    """Return the part after the last @ of an address.

    >>> get_domain_from_addr("foo@bar@example.com")
    'example.com'
    """
    return addr[addr.rfind("@") + 1:]


def addr_is_in_domain(addr, domain):
    """Test if the address is in the domain or one of its subdomains.

    >>> addr_is_in_domain("foo@sub.example.com", "example.com")
    True
    >>> addr_is_in_domain("foo@badexample.com", "example.com")
    False
    """
    return (string_ends_with(addr, "@" + domain) or
            string_ends_with(addr, "." + domain))


def addr_is_in_domain2(addr, domain):
    """Like L{addr_is_in_domain}, but also true if the domain is a
    subdomain of the address domain.

    >>> addr_is_in_domain2("foo@example.com", "mail.example.com")
    True
    """
    return (addr_is_in_domain(addr, domain) or
            string_ends_with(domain, "." + get_domain_from_addr(addr)))


def domain_is_in_domain(domain1, domain2):
    """Test if domain1 is equal to or a subdomain of domain2.

    >>> domain_is_in_domain("lists.example.com", "example.com")
    True
    >>> domain_is_in_domain("example.com", "lists.example.com")
    False
    """
    return (string_equal(domain1, domain2) or
            string_ends_with(domain1, "." + domain2))


def get_base_domain(domain):
    """Return the organizational (registered) domain.

    Falls back to the given domain if it has no known public suffix.
    """
    ext = _tld_extract(domain)
    if not ext.domain or not ext.suffix:
        return domain.lower()
    return ("%s.%s" % (ext.domain, ext.suffix)).lower()


def get_base_domain_from_addr(addr):
    return get_base_domain(get_domain_from_addr(addr))


def copy(obj):
    """Deep copy of a JSON-like result object."""
    return _copy.deepcopy(obj)


def date_to_string(date=None):
    """Format a date as YYYY-MM-DD (default today)."""
    if date is None:
        date = datetime.date.today()
    return date.strftime("%Y-%m-%d")


class Deferred(object):
    """Run an async loader at most once.

    The first caller starts the loader; every other caller, concurrent or
    later, awaits the same task.  A failed load is forgotten so the next
    caller retries.
    """

    def __init__(self, loader):
        self._loader = loader
        self._task = None

    @property
    def done(self):
        return self._task is not None and self._task.done()

    async def wait(self):
        if self._task is None:
            self._task = asyncio.ensure_future(self._loader())
        task = self._task
        try:
            return await task
        except Exception:
            if self._task is task:
                self._task = None
            raise

    def reset(self):
        self._task = None
