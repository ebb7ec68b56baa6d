"""
Tests for RecordBuilder.
These tests cover field shelving, deferred relationships and registration.
"""
import pytest

from recordgraph import BuildContext, RecordBuilder


class TestFieldValues:
    """Applied, shelved and restricted field values."""

    def test_constructor_values_are_applied(self, context):
        """Keyword values go through set and the builder registers itself."""
        builder = RecordBuilder("Account", Name="Acme")

        assert builder.record["Name"] == "Acme"
        assert "Name" in builder.applied_fields
        assert builder in context.registration
        assert builder.get_id() is None

    def test_restricted_field_is_shelved(self, context):
        """Writing a restricted field shelves the value instead of failing."""
        context.constraints.restrict("Account", "AutoNumber")
        builder = RecordBuilder("Account").set("AutoNumber", "A-001")

        assert "AutoNumber" not in builder.record
        assert builder.shelved_fields == {"AutoNumber": "A-001"}
        assert "AutoNumber" in builder.restricted_fields
        assert builder.get("AutoNumber") == "A-001"
        assert builder.has_value("AutoNumber")

    def test_restriction_is_remembered(self, context):
        """Once a field is found restricted the builder keeps shelving it."""
        context.constraints.restrict("Account", "AutoNumber")
        builder = RecordBuilder("Account").set("AutoNumber", "A-001")
        context.constraints.clear()

        builder.set("AutoNumber", "A-002")
        assert "AutoNumber" not in builder.record
        assert builder.get("AutoNumber") == "A-002"

    def test_assign_restricted_moves_applied_value(self):
        """An applied value becomes shelved through assign_restricted_field_value."""
        builder = RecordBuilder("Case", Status="New")
        builder.assign_restricted_field_value("Status", "Closed")

        assert "Status" not in builder.record
        assert "Status" not in builder.applied_fields
        assert builder.get("Status") == "Closed"

    def test_protective_reclaim_keeps_restricted_values_out(self):
        builder = RecordBuilder("Case", Subject="Broken")
        builder.assign_restricted_field_value("Status", "Closed")

        record = builder.reclaim_suspended_field_values(for_commit=True)

        assert "Status" not in record
        assert builder.shelved_fields == {"Status": "Closed"}

    def test_full_reclaim_and_commit_payload(self):
        """get_record folds everything in; the commit payload still omits restricted fields."""
        builder = RecordBuilder("Case", Subject="Broken")
        builder.assign_restricted_field_value("Status", "Closed")

        record = builder.get_record()
        payload = builder.commit_payload()

        assert record["Status"] == "Closed"
        assert builder.shelved_fields == {}
        assert "Status" not in payload
        assert payload["Subject"] == "Broken"

    def test_qualified_field_names(self):
        builder = RecordBuilder("Account")
        builder.set("Account.Name", "Acme")
        assert builder.get("Name") == "Acme"

        with pytest.raises(ValueError):
            builder.set("Contact.Email", "a@example.com")

    def test_record_type(self, context):
        """Named record variants resolve through the record-type resolver."""
        context.record_types.register("Account", "Partner", "012000000000001")
        builder = RecordBuilder("Account").record_type("Partner")

        assert builder.get("RecordTypeId") == "012000000000001"
        with pytest.raises(LookupError):
            builder.record_type("Unknown")

    def test_privileged_defaults_from_constraints(self, context):
        context.constraints.mark_privileged("User")

        assert RecordBuilder("User").is_privileged()
        assert not RecordBuilder("Account").is_privileged()
        assert RecordBuilder("Account", privileged=True).is_privileged()


class TestDeferredRelationships:
    """Links only materialize when relationships are reclaimed."""

    def test_set_parent_is_deferred(self, context):
        parent = RecordBuilder("Parent")
        child = RecordBuilder("Child").set_parent("ParentId", parent)

        assert not context.graph.has_edge("Child", "Parent")
        assert context.discovery.parents_of(child) == []

        child.reclaim_relationships()

        assert context.graph.has_edge("Child", "Parent")
        links = context.discovery.parents_of(child)
        assert len(links) == 1
        assert links[0].parent is parent
        assert links[0].field == "ParentId"
        assert child.pending_parents == {}

    def test_set_child_links_the_child(self, context):
        parent = RecordBuilder("Parent")
        child = RecordBuilder("Child")
        parent.set_child("ParentId", child).reclaim_relationships()

        assert context.graph.has_edge("Child", "Parent")
        assert context.discovery.parents_of(child)[0].parent is parent
        assert context.discovery.children_of(parent)[0].child is child

    def test_set_reference_needs_a_target_type(self, context):
        builder = RecordBuilder("Contact")
        with pytest.raises(ValueError):
            builder.set_reference("AccountId", "ExternalId", "EXT-1")

        builder.set_reference("AccountId", "ExternalId", "EXT-1", target_type="Account")
        builder.reclaim_relationships()

        assert context.graph.has_edge("Contact", "Account")
        assert context.discovery.references_of(builder)[0].external_id == "EXT-1"

    def test_links_require_builders(self):
        builder = RecordBuilder("Contact")
        with pytest.raises(TypeError):
            builder.set_parent("AccountId", "not a builder")


class TestRegistration:
    """Registration set membership."""

    def test_registration_is_idempotent(self, context):
        builder = RecordBuilder("Account")
        builder.register_including_parents()
        builder.register_including_parents()

        assert len(context.registration) == 1

    def test_persisted_builder_is_not_registered(self, context):
        builder = RecordBuilder("Account")
        context.registration.clear()
        builder.record.id = "ACC000000000001"

        builder.register_including_parents()
        assert builder not in context.registration

    def test_register_brings_parent_chain_along(self, context):
        grandparent = RecordBuilder("Region")
        parent = RecordBuilder("Account").set_parent("RegionId", grandparent)
        child = RecordBuilder("Contact").set_parent("AccountId", parent)
        context.registration.clear()

        child.register_including_parents()

        assert {b.entity_type for b in context.registration} == {"Region", "Account", "Contact"}

    def test_unregister_removes_parent_chain(self, context):
        grandparent = RecordBuilder("Region")
        parent = RecordBuilder("Account").set_parent("RegionId", grandparent)
        child = RecordBuilder("Contact").set_parent("AccountId", parent)

        child.unregister_including_parents()

        assert len(context.registration) == 0

    def test_unregister_spares_siblings(self, context):
        parent = RecordBuilder("Account")
        first = RecordBuilder("Contact").set_parent("AccountId", parent)
        second = RecordBuilder("Contact").set_parent("AccountId", parent)

        first.unregister_including_parents()

        assert first not in context.registration
        assert parent not in context.registration
        assert second in context.registration

    def test_explicit_context(self, context):
        """A builder bound to another context never touches the default one."""
        other = BuildContext()
        builder = RecordBuilder("Account", context=other)

        assert builder in other.registration
        assert builder not in context.registration
        assert other.builder("Contact").context is other

    def test_registry_status(self, context):
        context.set_discoverable_field("Account", "Name")
        RecordBuilder("Account", Name="Acme")
        RecordBuilder("Contact")

        status = context.get_registry_status()

        assert status["registered"] == 2
        assert status["entity_types"] == ["Account", "Contact"]
        assert status["discoverable_fields"] == {"Account": ["Name"]}
        assert status["indexed_values"] == 1
