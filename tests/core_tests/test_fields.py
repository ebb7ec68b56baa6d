"""
Tests for field identifiers and records.
"""
import pytest

from recordgraph.core.fields import FieldRef, Record, as_field_ref, field_name


class TestFieldRef:
    """Normalization of the accepted field identifier forms."""

    def test_plain_name(self):
        ref = as_field_ref("Name")
        assert ref.entity_type is None
        assert ref.name == "Name"

    def test_plain_name_qualified_by_type(self):
        ref = as_field_ref("Name", "Account")
        assert ref == FieldRef(entity_type="Account", name="Name")
        assert ref.qualified() == "Account.Name"

    def test_qualified_string(self):
        ref = as_field_ref("Account.ExternalId")
        assert ref.entity_type == "Account"
        assert ref.name == "ExternalId"

    def test_field_ref_passthrough(self):
        """A FieldRef without a type picks up the given one."""
        ref = as_field_ref(FieldRef(name="Email"), "Contact")
        assert ref.qualified() == "Contact.Email"

        qualified = FieldRef(entity_type="Lead", name="Email")
        assert as_field_ref(qualified, "Contact") is qualified

    def test_field_name(self):
        assert field_name("Account.Name") == "Name"
        assert field_name(FieldRef(name="Name")) == "Name"

    @pytest.mark.parametrize("bad", ["", "   ", ".Name", "Account.", None, 42])
    def test_invalid_identifiers(self, bad):
        with pytest.raises(ValueError):
            as_field_ref(bad)


class TestRecord:
    """Tests for the Record mapping."""

    def test_access_by_any_identifier(self):
        record = Record(entity_type="Account")
        record["Name"] = "Acme"
        record.put(FieldRef(name="Phone"), "555")

        assert record["Account.Name"] == "Acme"
        assert record.get("Phone") == "555"
        assert "Name" in record
        assert "Missing" not in record
        assert 42 not in record
        assert list(record.keys()) == ["Name", "Phone"]

    def test_remove(self):
        record = Record(entity_type="Account", fields={"Name": "Acme"})
        assert record.remove("Name") == "Acme"
        assert record.remove("Name") is None
        assert "Name" not in record

    def test_copy_is_independent(self):
        """Copies are deep and can leave fields out."""
        record = Record(entity_type="Account", id="ACC1", fields={"Name": "Acme", "Tags": ["a"]})
        copy = record.copy_record(exclude={"Name"})

        assert copy.id == "ACC1"
        assert "Name" not in copy
        copy["Tags"].append("b")
        assert record["Tags"] == ["a"]
