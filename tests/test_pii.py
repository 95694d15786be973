"""Tests for PII masking of free text and nested payloads."""
from callsim.security.pii import PIIAnonymizer, anonymize, anonymize_recursive, mask_tail


class TestMaskTail:
    """Tests for the tail-preserving mask."""

    def test_keeps_last_four(self):
        assert mask_tail("98765-4321") == "******4321"

    def test_short_values_fully_masked(self):
        assert mask_tail("123") == "***"


class TestAnonymize:
    """Tests for anonymize()."""

    def test_masks_email_phone_and_cpf(self):
        """All three PII kinds are masked keeping four trailing characters."""
        text = "Contato: joao.silva@exemplo.com, tel (11) 98765-4321, CPF 123.456.789-09."

        result = anonymize(text)

        assert result == "Contato: " + "*" * 18 + ".com, tel " + "*" * 11 + "4321, CPF " + "*" * 10 + "9-09."

    def test_raw_mode_is_identity(self):
        text = "Ligue (11) 98765-4321 ou escreva para ana@empresa.com.br"
        assert anonymize(text, "raw") is text

    def test_text_without_pii_unchanged(self):
        text = "O cliente pediu o cancelamento do plano."
        assert anonymize(text) == text

    def test_plain_eleven_digit_cpf(self):
        result = anonymize("cpf 12345678909")
        assert result == "cpf *******8909"

    def test_empty_text(self):
        assert anonymize("") == ""

    def test_custom_visible_suffix(self):
        anonymizer = PIIAnonymizer(visible=2)
        assert anonymizer.anonymize("ana@x.com") == "*******om"


class TestAnonymizeRecursive:
    """Tests for nested anonymization."""

    def test_masks_strings_in_nested_structures(self):
        value = {"label": "ana@x.com", "tags": ["ok", "(11) 91234-5678"], "weight": 3}

        result = anonymize_recursive(value)

        assert result["label"].endswith(".com")
        assert "ana" not in result["label"]
        assert result["tags"][0] == "ok"
        assert result["tags"][1].endswith("5678")
        assert "91234" not in result["tags"][1]
        assert result["weight"] == 3

    def test_raw_mode_returns_value(self):
        value = {"email": "ana@x.com"}
        assert anonymize_recursive(value, "raw") is value

    def test_none_passthrough(self):
        assert anonymize_recursive(None) is None
