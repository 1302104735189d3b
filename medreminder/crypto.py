# medreminder/crypto.py
# AES-GCM helpers for at-rest blobs, plus the per-install data key.
import os, uuid
from pathlib import Path
from threading import RLock
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from .config import autoclass, is_android
from .logs import logger

CRYPTO_LOCK = RLock()

_ANDROID_KEY_ALIAS = "medreminder_key_v1"
_NONCE_LEN = 12


def atomic_write_bytes(path: Path, data: bytes):
    tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex}")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    try:
        tmp.write_bytes(data)
        tmp.replace(path)
    finally:
        tmp.unlink(missing_ok=True)


def aes_encrypt(data: bytes, key: bytes, aad: Optional[bytes] = None) -> bytes:
    aes = AESGCM(key)
    nonce = os.urandom(_NONCE_LEN)
    return nonce + aes.encrypt(nonce, data, aad)


def aes_decrypt(data: bytes, key: bytes, aad: Optional[bytes] = None) -> bytes:
    if not data or len(data) < _NONCE_LEN:
        raise InvalidTag("ciphertext too short")
    aes = AESGCM(key)
    nonce, ct = data[:_NONCE_LEN], data[_NONCE_LEN:]
    return aes.decrypt(nonce, ct, aad)


# -------------------------
# Android Keystore wraps the AES key with an RSA keypair
# -------------------------
def _android_keystore():
    KeyStore = autoclass("java.security.KeyStore")
    ks = KeyStore.getInstance("AndroidKeyStore")
    ks.load(None)
    if not ks.containsAlias(_ANDROID_KEY_ALIAS):
        KeyPairGenerator = autoclass("java.security.KeyPairGenerator")
        KeyProperties = autoclass("android.security.keystore.KeyProperties")
        Builder = autoclass("android.security.keystore.KeyGenParameterSpec$Builder")
        purposes = int(KeyProperties.PURPOSE_ENCRYPT) | int(KeyProperties.PURPOSE_DECRYPT)
        builder = Builder(_ANDROID_KEY_ALIAS, purposes)
        builder.setDigests([KeyProperties.DIGEST_SHA256])
        builder.setEncryptionPaddings([KeyProperties.ENCRYPTION_PADDING_RSA_OAEP])
        kpg = KeyPairGenerator.getInstance(KeyProperties.KEY_ALGORITHM_RSA, "AndroidKeyStore")
        kpg.initialize(builder.build())
        kpg.generateKeyPair()
    return ks


def _android_rsa(mode_name: str, payload: bytes) -> bytes:
    ks = _android_keystore()
    CipherJ = autoclass("javax.crypto.Cipher")
    cipher = CipherJ.getInstance("RSA/ECB/OAEPWithSHA-256AndMGF1Padding")
    if mode_name == "wrap":
        key = ks.getCertificate(_ANDROID_KEY_ALIAS).getPublicKey()
        cipher.init(CipherJ.ENCRYPT_MODE, key)
    else:
        key = ks.getEntry(_ANDROID_KEY_ALIAS, None).getPrivateKey()
        cipher.init(CipherJ.DECRYPT_MODE, key)
    return bytes(cipher.doFinal(payload))


def _load_key(key_path: Path) -> Optional[bytes]:
    if not key_path.exists():
        return None
    d = key_path.read_bytes()
    if is_android():
        try:
            k = _android_rsa("unwrap", d)
            if len(k) == 32:
                return k
        except Exception:
            logger.exception("key unwrap failed")
            return None
    return d[:32] if len(d) >= 32 else None


def _store_key(key_path: Path, raw_key: bytes):
    if is_android():
        try:
            atomic_write_bytes(key_path, _android_rsa("wrap", raw_key))
            logger.info("key stored: android keystore")
            return
        except Exception:
            logger.exception("key wrap failed; storing raw key")
    atomic_write_bytes(key_path, raw_key)
    logger.info("key stored: file")


def get_or_create_key(key_path: Path) -> bytes:
    with CRYPTO_LOCK:
        k = _load_key(key_path)
        if k and len(k) == 32:
            return k
        key = AESGCM.generate_key(bit_length=256)
        _store_key(key_path, key)
        return key
