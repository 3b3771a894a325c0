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

"""Key-value stores for keys, sign rules and saved results.

Values must be JSON serializable.  Stored values are copies, so changing
a returned value does not change the store.
"""

import asyncio
import json
import logging
import os
import tempfile

from dkimverifier.util import copy

__all__ = [
    'JsonFileStorage',
    'MemoryStorage',
    ]

log = logging.getLogger(__name__)


class MemoryStorage(object):
    """Store that lives only as long as the object."""

    def __init__(self, values=None):
        self._values = copy(values) if values else {}

    async def get(self, key):
        return copy(self._values.get(key))

    async def set(self, key, value):
        self._values[key] = copy(value)

    async def remove(self, key):
        self._values.pop(key, None)


class JsonFileStorage(object):
    """Store kept in a single JSON file.

    The file is rewritten completely on every change.  File access runs in
    the default executor of the event loop.
    """

    def __init__(self, path):
        self.path = path

    def _read(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return {}

    def _write(self, values):
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp = tempfile.mkstemp(dir=directory, prefix='.dkimverifier')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(values, f, indent=1, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

    def _update(self, key, value, remove=False):
        values = self._read()
        if remove:
            if values.pop(key, None) is None:
                return
        else:
            values[key] = value
        self._write(values)

    async def _run(self, func, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, func, *args)

    async def get(self, key):
        values = await self._run(self._read)
        return values.get(key)

    async def set(self, key, value):
        await self._run(self._update, key, value)
        log.debug("stored %s in %s" % (key, self.path))

    async def remove(self, key):
        await self._run(self._update, key, None, True)
