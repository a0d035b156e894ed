"""
Credential issuance and validation.

A credential is an opaque bearer token: the encrypted form of a scope payload
naming who it was issued to, which guild (if any) it is restricted to, and
which operations it may call.

    {
        "subjectId": "123456789012345678",        # Who the credential is for
        "tenantId": "987654321098765432",         # Guild restriction, or null
        "allowedOperations": ["getBalance", ...]  # What it may call
    }

Encryption uses Fernet (AES-128-CBC with an HMAC-SHA256 tag and a random IV
per token), keyed by PBKDF2 over the configured server secret. Fresh
randomness means issuing the same payload twice yields two different
credentials; the HMAC means a tampered credential fails to decrypt.

Holding a credential is not enough on its own: it must also be present in the
RevocationStore. Clearing the store revokes every credential at once.
"""

import base64
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from economy_connector.errors import (
    ConfigurationError,
    MalformedCredential,
    OperationNotPermitted,
    TenantNotPermitted,
    UnknownCredential,
)
from economy_connector.revocation import RevocationStore

logger = logging.getLogger(__name__)

KDF_ITERATIONS = 100_000


@dataclass(frozen=True)
class ScopePayload:
    """
    Decoded contents of a credential.

    Attributes:
        subject_id: Who the credential was issued to. Discord IDs exceed the
                    range of a double, so they are always carried as strings.
        tenant_id: Guild the credential is restricted to; None means any guild
        allowed_operations: Operation names the credential may call
    """

    subject_id: str
    tenant_id: str | None
    allowed_operations: frozenset[str]

    def to_json(self) -> str:
        return json.dumps(
            {
                "subjectId": self.subject_id,
                "tenantId": self.tenant_id,
                "allowedOperations": sorted(self.allowed_operations),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "ScopePayload":
        """
        Parse a serialized payload.

        Raises:
            ValueError: If the JSON is invalid or any field has the wrong type
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("payload must be an object")

        subject_id = data.get("subjectId")
        tenant_id = data.get("tenantId")
        operations = data.get("allowedOperations")

        if not isinstance(subject_id, str) or not subject_id:
            raise ValueError("subjectId must be a non-empty string")
        if tenant_id is not None and not isinstance(tenant_id, str):
            raise ValueError("tenantId must be a string or null")
        if not isinstance(operations, list) or not all(isinstance(o, str) for o in operations):
            raise ValueError("allowedOperations must be a list of strings")

        return cls(
            subject_id=subject_id,
            tenant_id=tenant_id,
            allowed_operations=frozenset(operations),
        )


class CredentialCipher:
    """Symmetric authenticated encryption of scope payloads."""

    def __init__(self, secret: str | None, salt: str = "economy-connector-credentials-v1"):
        if not secret:
            raise ConfigurationError("No credential secret configured.")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode("utf-8"),
            iterations=KDF_ITERATIONS,
        )
        self._fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))

    def encrypt(self, payload: ScopePayload) -> str:
        return self._fernet.encrypt(payload.to_json().encode("utf-8")).decode("ascii")

    def decrypt(self, credential: str) -> ScopePayload:
        """
        Decrypt and parse a credential.

        Raises:
            MalformedCredential: Wrong secret, tampered or truncated token,
                                 or a payload that does not parse
        """
        try:
            plaintext = self._fernet.decrypt(credential.encode("utf-8"))
            return ScopePayload.from_json(plaintext.decode("utf-8"))
        except (InvalidToken, UnicodeError, ValueError) as e:
            raise MalformedCredential() from e


class CredentialIssuer:
    """
    Mints new credentials and registers them as honored.

    Issuance is an administrative action; it is never reachable through the
    per-request pipeline.
    """

    def __init__(self, cipher: CredentialCipher, store: RevocationStore):
        self.cipher = cipher
        self.store = store

    async def issue(
        self,
        subject_id: str | int,
        tenant_id: str | int | None,
        allowed_operations: Iterable[str],
    ) -> str:
        """
        Create a credential and persist it before handing it out.

        Operation names are not checked against the schema registry: a
        credential for an operation that does not exist is simply useless.

        Args:
            subject_id: Who the credential is for (ints are stringified)
            tenant_id: Guild restriction, or None for any guild
            allowed_operations: Operation names the credential may call

        Returns:
            The credential string

        Raises:
            ValueError: If subject_id or allowed_operations is empty
            PersistenceError: If the credential could not be recorded; the
                              credential is then not returned at all
        """
        subject = str(subject_id)
        operations = frozenset(allowed_operations)
        if not subject:
            raise ValueError("subject_id must not be empty")
        if not operations:
            raise ValueError("allowed_operations must not be empty")

        payload = ScopePayload(
            subject_id=subject,
            tenant_id=None if tenant_id is None else str(tenant_id),
            allowed_operations=operations,
        )
        credential = self.cipher.encrypt(payload)

        # Persist first: a credential the store doesn't know is worthless,
        # and the caller must learn about the failure.
        await self.store.add(credential)

        logger.info(
            "Credential issued",
            extra={
                "log_data": {
                    "subject": payload.subject_id,
                    "tenant": payload.tenant_id,
                    "operations": sorted(operations),
                }
            },
        )
        return credential


class CredentialValidator:
    """Checks presented credentials against the store and a requested scope."""

    def __init__(self, cipher: CredentialCipher, store: RevocationStore):
        self.cipher = cipher
        self.store = store

    async def validate(
        self,
        credential: str,
        operation: str,
        tenant_id: str | None = None,
    ) -> ScopePayload:
        """
        Validate a credential for one operation call.

        The checks run in order and stop at the first failure:
        1. The exact string must be in the revocation store
        2. It must decrypt to a well-formed payload
        3. The operation must be in the payload's allowed operations
        4. If a tenant is requested and the payload is tenant-restricted,
           the two must match

        Args:
            credential: The presented credential string
            operation: The operation being called
            tenant_id: The guild the request targets, if any

        Returns:
            The decoded ScopePayload

        Raises:
            UnknownCredential: Not in the store (never issued, or revoked)
            MalformedCredential: Could not be decrypted or parsed
            OperationNotPermitted: Operation outside the credential's scope
            TenantNotPermitted: Credential restricted to another guild
        """
        # Step 1: Membership
        # Checked before decryption so a revoked credential is rejected even
        # though it would still decrypt.
        if not await self.store.contains(credential):
            raise UnknownCredential()

        # Step 2: Decrypt
        payload = self.cipher.decrypt(credential)

        # Step 3: Scope
        if operation not in payload.allowed_operations:
            raise OperationNotPermitted(f"Operation '{operation}' not allowed by this credential.")

        # Step 4: Tenant (only when the request names one)
        if tenant_id is not None and payload.tenant_id is not None:
            if payload.tenant_id != str(tenant_id):
                raise TenantNotPermitted()

        return payload
