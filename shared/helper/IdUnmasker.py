import base64
import hashlib
import json

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from shared.helper.HelperConfig import HelperConfig
from shared.models.patch import PatchTags, UnmaskedTags

DEFAULT_MASK_SALT = "default-mask-salt-change-in-production"


class IdUnmasker:
    """
    Reverses the identifier masking applied by the uploading backend.

    Masked ids are base64(iv[16] + AES-256-CBC ciphertext) with PKCS7 padding,
    keyed with SHA-256(ID_MASK_SALT). Tags in patch listings are usually
    JSON-encoded strings ("\\"<masked>\\""). Unmasking never raises: any
    failure yields an empty string.
    """

    def __init__(self, helper_config: HelperConfig, salt: str | None = None):
        self.logging = helper_config.get_logger()
        salt = salt or helper_config.get_string_val("ID_MASK_SALT", default=DEFAULT_MASK_SALT)
        self._key = hashlib.sha256(salt.encode("utf-8")).digest()

    def unmask_id(self, masked_id: str) -> str:
        """Decrypt a single masked id.

        Args:
            masked_id (str): base64 encoded iv + ciphertext.

        Returns:
            str: The original id, or "" if it cannot be recovered.
        """
        if not masked_id or not masked_id.strip():
            return ""
        try:
            raw = base64.b64decode(masked_id)
            if len(raw) < 16:
                return ""
            iv, encrypted = raw[:16], raw[16:]
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(encrypted) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except ValueError as e:
            self.logging.warning("Failed to unmask ID: %s", e)
            return ""

    def unmask_json_encoded_id(self, encoded: str) -> str:
        """Unmask an id that may be wrapped in a JSON string literal."""
        if not encoded or not encoded.strip():
            return ""
        try:
            masked = json.loads(encoded)
        except ValueError:
            masked = encoded
        if not isinstance(masked, str):
            masked = encoded
        return self.unmask_id(masked)

    def unmask_patch_tags(self, tags: PatchTags | None) -> UnmaskedTags:
        """Unmask the user, chat and submission ids of a patch.

        Args:
            tags (PatchTags | None): The masked tags, as listed by the blob service.

        Returns:
            UnmaskedTags: Clear-text ids, empty where unmasking failed.
        """
        if tags is None:
            return UnmaskedTags()
        return UnmaskedTags(
            user_id=self.unmask_json_encoded_id(tags.user_id),
            chat_id=self.unmask_json_encoded_id(tags.chat_id),
            submission_id=self.unmask_json_encoded_id(tags.submission_id),
        )
