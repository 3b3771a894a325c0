import unittest
import doctest
import dkimverifier
from dkimverifier import (
    arhparser,
    authverifier,
    canonicalization,
    crypto,
    dmarc,
    msgparser,
    prefs,
    rfcparser,
    signature,
    signrules,
    util,
    )
from dkimverifier.tests import test_suite

for module in (dkimverifier, arhparser, authverifier, canonicalization,
               crypto, dmarc, msgparser, prefs, rfcparser, signature,
               signrules, util):
    doctest.testmod(module)
unittest.TextTestRunner().run(test_suite())
