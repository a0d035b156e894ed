"""
Unit tests for credential issuance and validation (economy_connector/credentials.py).

validate() runs four checks in a fixed order (membership, decryption, scope,
tenant). Each test targets one of them so a failure points at the step that
broke.
"""

import json

import pytest

from economy_connector.credentials import (
    CredentialCipher,
    CredentialIssuer,
    CredentialValidator,
    ScopePayload,
)
from economy_connector.errors import (
    ConfigurationError,
    MalformedCredential,
    OperationNotPermitted,
    PersistenceError,
    TenantNotPermitted,
    UnknownCredential,
)
from economy_connector.revocation import RevocationStore
from tests.sample_data import TEST_SALT, USER_A


class TestCredentialCipher:
    """Tests for payload encryption."""

    def test_round_trip(self, cipher):
        payload = ScopePayload("42", "7", frozenset({"getBalance", "getGuildXp"}))

        assert cipher.decrypt(cipher.encrypt(payload)) == payload

    def test_encryption_is_randomized(self, cipher):
        """The same payload never produces the same credential twice."""
        payload = ScopePayload("42", None, frozenset({"getBalance"}))

        assert cipher.encrypt(payload) != cipher.encrypt(payload)

    def test_large_ids_keep_precision(self, cipher):
        payload = ScopePayload("18446744073709551615", None, frozenset({"getBalance"}))

        assert cipher.decrypt(cipher.encrypt(payload)).subject_id == "18446744073709551615"

    def test_missing_secret_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            CredentialCipher(None)

    def test_empty_secret_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            CredentialCipher("")

    def test_wrong_secret_raises_malformed(self, cipher):
        credential = CredentialCipher("another-secret", TEST_SALT).encrypt(
            ScopePayload("42", None, frozenset({"getBalance"}))
        )

        with pytest.raises(MalformedCredential):
            cipher.decrypt(credential)

    def test_tampered_credential_raises_malformed(self, cipher):
        """Authenticated encryption: flipping one character breaks the tag."""
        credential = cipher.encrypt(ScopePayload("42", None, frozenset({"getBalance"})))
        middle = len(credential) // 2
        flipped = "A" if credential[middle] != "A" else "B"
        tampered = credential[:middle] + flipped + credential[middle + 1 :]

        with pytest.raises(MalformedCredential):
            cipher.decrypt(tampered)

    def test_garbage_raises_malformed(self, cipher):
        with pytest.raises(MalformedCredential):
            cipher.decrypt("not-a-credential")


class TestScopePayload:
    """Tests for payload parsing."""

    def test_from_json_rejects_non_list_operations(self):
        raw = json.dumps({"subjectId": "42", "tenantId": None, "allowedOperations": "getBalance"})

        with pytest.raises(ValueError, match="allowedOperations"):
            ScopePayload.from_json(raw)

    def test_from_json_rejects_numeric_subject(self):
        raw = json.dumps({"subjectId": 42, "tenantId": None, "allowedOperations": []})

        with pytest.raises(ValueError, match="subjectId"):
            ScopePayload.from_json(raw)

    def test_from_json_rejects_numeric_tenant(self):
        raw = json.dumps({"subjectId": "42", "tenantId": 7, "allowedOperations": []})

        with pytest.raises(ValueError, match="tenantId"):
            ScopePayload.from_json(raw)

    def test_valid_json_that_is_not_a_payload_is_malformed(self, cipher):
        """Correctly encrypted but structurally wrong content is rejected."""
        credential = cipher._fernet.encrypt(b'["not", "a", "payload"]').decode()

        with pytest.raises(MalformedCredential):
            cipher.decrypt(credential)


class TestCredentialIssuer:
    """Tests for CredentialIssuer.issue()."""

    async def test_issue_registers_credential(self, issuer, store):
        credential = await issuer.issue("42", None, ["getBalance"])

        assert await store.list_all() == [credential]

    async def test_issue_stringifies_ids(self, issuer, cipher):
        credential = await issuer.issue(42, 7, ["getBalance"])

        payload = cipher.decrypt(credential)
        assert payload.subject_id == "42"
        assert payload.tenant_id == "7"

    async def test_issue_accepts_unregistered_operation_names(self, issuer, cipher):
        """Operation names are not checked against the schema registry."""
        credential = await issuer.issue("42", None, ["doesNotExist"])

        assert cipher.decrypt(credential).allowed_operations == frozenset({"doesNotExist"})

    async def test_issuing_same_scope_twice_adds_two_entries(self, issuer, store):
        """Randomized encryption means literal-string dedup never triggers on issuance."""
        first = await issuer.issue("42", None, ["getBalance"])
        second = await issuer.issue("42", None, ["getBalance"])

        assert first != second
        assert await store.list_all() == [first, second]

    async def test_empty_subject_rejected(self, issuer, store):
        with pytest.raises(ValueError, match="subject_id"):
            await issuer.issue("", None, ["getBalance"])

        assert await store.list_all() == []

    async def test_empty_operations_rejected(self, issuer):
        with pytest.raises(ValueError, match="allowed_operations"):
            await issuer.issue("42", None, [])

    async def test_store_failure_propagates(self, cipher, tmp_path):
        """If the credential cannot be recorded, the caller must not receive it."""
        blocker = tmp_path / "file"
        blocker.write_text("", encoding="utf-8")
        issuer = CredentialIssuer(cipher, RevocationStore(blocker / "keys.json"))

        with pytest.raises(PersistenceError):
            await issuer.issue("42", None, ["getBalance"])


class TestCredentialValidator:
    """Tests for CredentialValidator.validate()."""

    # ----- Happy path -----

    async def test_issued_credential_validates(self, validator, issue_credential):
        credential = await issue_credential(operations=["getBalance", "getGuildXp"])

        payload = await validator.validate(credential, "getGuildXp")

        assert payload.subject_id == USER_A
        assert payload.allowed_operations == frozenset({"getBalance", "getGuildXp"})

    async def test_tenant_round_trip(self, validator, issue_credential):
        """Guild-restricted credential: right guild passes, other guild fails."""
        credential = await issue_credential(subject="42", tenant="7", operations=["getBalance"])

        payload = await validator.validate(credential, "getBalance", tenant_id="7")
        assert payload.subject_id == "42"

        with pytest.raises(TenantNotPermitted):
            await validator.validate(credential, "getBalance", tenant_id="9")

    async def test_unrestricted_credential_passes_any_tenant(self, validator, issue_credential):
        credential = await issue_credential(tenant=None)

        payload = await validator.validate(credential, "getBalance", tenant_id="9")

        assert payload.tenant_id is None

    async def test_restricted_credential_without_requested_tenant(
        self, validator, issue_credential
    ):
        """The tenant check only runs when the request names a guild."""
        credential = await issue_credential(tenant="7")

        payload = await validator.validate(credential, "getBalance")

        assert payload.tenant_id == "7"

    # ----- Membership -----

    async def test_unregistered_credential_rejected(self, validator, cipher):
        """A credential that decrypts fine but was never registered is unknown."""
        credential = cipher.encrypt(ScopePayload("42", None, frozenset({"getBalance"})))

        with pytest.raises(UnknownCredential):
            await validator.validate(credential, "getBalance")

    async def test_revoked_credential_rejected(self, validator, store, issue_credential):
        credential = await issue_credential()
        await store.clear_all()

        with pytest.raises(UnknownCredential):
            await validator.validate(credential, "getBalance")

    async def test_membership_checked_before_scope(self, validator, cipher):
        """An unknown credential is reported as unknown, even for a forbidden operation."""
        credential = cipher.encrypt(ScopePayload("42", None, frozenset({"getBalance"})))

        with pytest.raises(UnknownCredential):
            await validator.validate(credential, "setBalance")

    # ----- Decryption -----

    async def test_registered_garbage_rejected_as_malformed(self, validator, store):
        await store.add("not-a-credential")

        with pytest.raises(MalformedCredential):
            await validator.validate("not-a-credential", "getBalance")

    async def test_credential_from_other_secret_rejected(self, validator, store):
        credential = CredentialCipher("another-secret", TEST_SALT).encrypt(
            ScopePayload("42", None, frozenset({"getBalance"}))
        )
        await store.add(credential)

        with pytest.raises(MalformedCredential):
            await validator.validate(credential, "getBalance")

    # ----- Scope -----

    async def test_operation_outside_scope_rejected(self, validator, issue_credential):
        credential = await issue_credential(operations=["getBalance"])

        with pytest.raises(OperationNotPermitted, match="setBalance"):
            await validator.validate(credential, "setBalance")

    async def test_scope_checked_before_tenant(self, validator, issue_credential):
        credential = await issue_credential(tenant="7", operations=["getBalance"])

        with pytest.raises(OperationNotPermitted):
            await validator.validate(credential, "setBalance", tenant_id="9")
