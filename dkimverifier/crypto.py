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

__all__ = [
    'HASH_ALGORITHMS',
    'digest',
    'verify',
    ]

import base64
import binascii
import hashlib

import nacl.exceptions
import nacl.signing
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from dkimverifier.errors import SigError


HASH_ALGORITHMS = {
    'sha1': hashlib.sha1,
    'sha256': hashlib.sha256,
    }

_RSA_HASHES = {
    'sha1': hashes.SHA1,
    'sha256': hashes.SHA256,
    }


def _to_bytes(data):
    # messages are kept as latin-1 "binary strings"
    if isinstance(data, str):
        return data.encode('latin-1')
    return data


def _b64decode(data):
    return base64.b64decode(_to_bytes(data), validate=False)


def digest(algorithm, message):
    """Compute a base64 encoded hash.

    >>> digest('sha256', '')
    '47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU='

    @param algorithm: "sha1" or "sha256"
    @param message: binary string to hash
    @return: base64 encoded digest
    """
    try:
        hasher = HASH_ALGORITHMS[algorithm.lower()]
    except KeyError:
        raise ValueError("unsupported hash algorithm %s" % algorithm)
    return base64.b64encode(hasher(_to_bytes(message)).digest()).decode('ascii')


def _verify_rsa(key, digest_algorithm, signature, data):
    try:
        public_key = serialization.load_der_public_key(_b64decode(key))
    except (ValueError, TypeError, binascii.Error, UnsupportedAlgorithm):
        raise SigError("DKIM_SIGERROR_KEYDECODE")
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise SigError("DKIM_SIGERROR_KEYDECODE")

    try:
        hash_cls = _RSA_HASHES[digest_algorithm]
    except KeyError:
        raise SigError("DKIM_SIGERROR_KEY_HASHNOTINCLUDED")

    try:
        sig = _b64decode(signature)
    except binascii.Error:
        return False, public_key.key_size
    try:
        public_key.verify(sig, _to_bytes(data), padding.PKCS1v15(), hash_cls())
    except InvalidSignature:
        return False, public_key.key_size
    return True, public_key.key_size


def _verify_ed25519(key, digest_algorithm, signature, data):
    # RFC 8463: the signature is computed over the sha256 hash of the data
    if digest_algorithm != 'sha256':
        raise SigError("DKIM_SIGERROR_KEY_HASHNOTINCLUDED")
    try:
        raw_key = _b64decode(key)
    except binascii.Error:
        raise SigError("DKIM_SIGERROR_KEYDECODE")
    if len(raw_key) != 32:
        raise SigError("DKIM_SIGERROR_KEYDECODE")
    try:
        verify_key = nacl.signing.VerifyKey(raw_key)
    except (ValueError, TypeError, nacl.exceptions.CryptoError):
        raise SigError("DKIM_SIGERROR_KEYDECODE")

    try:
        sig = _b64decode(signature)
    except binascii.Error:
        return False, 256
    hashed = hashlib.sha256(_to_bytes(data)).digest()
    try:
        verify_key.verify(hashed, sig)
    except (nacl.exceptions.BadSignatureError, ValueError,
            nacl.exceptions.CryptoError):
        return False, 256
    return True, 256


def verify(sign_algorithm, key, digest_algorithm, signature, data):
    """Verify a DKIM signature.

    @param sign_algorithm: "rsa" or "ed25519"
    @param key: base64 encoded public key (the p= tag of the key record)
    @param digest_algorithm: "sha1" or "sha256"
    @param signature: base64 encoded signature, without FWS
    @param data: binary string that was signed
    @return: tuple (valid, key length in bits)
    @raise SigError: DKIM_SIGERROR_KEYDECODE if the key can not be decoded
    """
    sign_algorithm = sign_algorithm.lower()
    digest_algorithm = digest_algorithm.lower()
    if sign_algorithm == 'rsa':
        return _verify_rsa(key, digest_algorithm, signature, data)
    elif sign_algorithm == 'ed25519':
        return _verify_ed25519(key, digest_algorithm, signature, data)
    raise SigError("DKIM_SIGERROR_UNKNOWN_A")
