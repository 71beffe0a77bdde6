"""Tests for step validation: ordering, coercion, field and row errors, files."""

from types import SimpleNamespace

import pytest
from submissions.session.errors import OutOfOrderStep, UnknownStep
from submissions.session.validation import validate_step
from submissions.storage.stager import StagedUpload


def _upload(field="images", name="a.jpg", size=1024, content_type="image/jpeg", ref="staging/a"):
    return StagedUpload(
        field=field,
        original_name=name,
        content_type=content_type,
        size_bytes=size,
        content_hash="0" * 64,
        storage_ref=ref,
    )


@pytest.fixture()
def product_form(registry):
    return registry.get("product_form")


class TestStepOrdering:
    def test_unknown_step(self, product_form):
        with pytest.raises(UnknownStep):
            validate_step(product_form, 0, 9, {})

    def test_step_two_before_step_one(self, product_form):
        with pytest.raises(OutOfOrderStep) as exc:
            validate_step(product_form, 0, 2, {})
        assert exc.value.context["expected_step"] == 1

    def test_resubmitting_an_accepted_step(self, product_form):
        with pytest.raises(OutOfOrderStep):
            validate_step(product_form, 1, 1, {"name": "x"})


class TestScalarFields:
    def test_valid_payload_is_normalized(self, product_form, basic_info, reference_data):
        result = validate_step(product_form, 0, 1, basic_info, reference_data=reference_data)
        assert result.is_valid
        assert result.data == {
            "name": "Trail Runner 2",
            "description": "Lightweight trail running shoe",
            "price": 89.9,
            "subcategory_id": 12,
        }

    def test_unknown_fields_are_dropped(self, product_form, basic_info, reference_data):
        result = validate_step(product_form, 0, 1, {**basic_info, "is_admin": True}, reference_data=reference_data)
        assert "is_admin" not in result.data

    def test_all_errors_reported_in_declaration_order(self, product_form, reference_data):
        result = validate_step(
            product_form, 0, 1, {"price": "cheap", "subcategory_id": 999}, reference_data=reference_data
        )
        assert not result.is_valid
        assert [e.field for e in result.errors] == ["name", "description", "price", "subcategory_id"]
        assert result.errors[0].message == "The name field is required."
        assert result.errors[2].message == "The price must be a number."
        assert result.errors[3].message == "The selected subcategory id is invalid."

    def test_string_length_limit(self, product_form, basic_info, reference_data):
        result = validate_step(product_form, 0, 1, {**basic_info, "name": "x" * 256}, reference_data=reference_data)
        assert [e.field for e in result.errors] == ["name"]

    def test_negative_price(self, product_form, basic_info, reference_data):
        result = validate_step(product_form, 0, 1, {**basic_info, "price": -1}, reference_data=reference_data)
        assert result.errors[0].message == "The price must be at least 0."

    @pytest.mark.parametrize("price", ["nan", "inf", "-Infinity", "1e999", float("nan"), float("inf")])
    def test_non_finite_price_is_not_a_number(self, product_form, basic_info, reference_data, price):
        result = validate_step(product_form, 0, 1, {**basic_info, "price": price}, reference_data=reference_data)
        assert not result.is_valid
        assert [(e.field, e.message) for e in result.errors] == [("price", "The price must be a number.")]

    def test_blank_string_counts_as_missing(self, product_form, basic_info, reference_data):
        result = validate_step(product_form, 0, 1, {**basic_info, "name": "   "}, reference_data=reference_data)
        assert result.errors[0].message == "The name field is required."

    def test_nullable_field_accepts_explicit_null(self, registry):
        seller_form = registry.get("seller_form")
        payload = {
            "business_name": "Acme",
            "business_description": None,
            "business_address": "1 Main St",
            "phone_number": "555-0100",
        }
        result = validate_step(seller_form, 0, 1, payload)
        assert result.is_valid
        assert result.data["business_description"] is None

    def test_choices(self, registry):
        seller_form = registry.get("seller_form")
        result = validate_step(
            seller_form,
            1,
            2,
            {"id_type": "library_card", "id_number": "123"},
            uploads=[_upload("id_document", "id.pdf", content_type="application/pdf")],
        )
        assert [e.field for e in result.errors] == ["id_type"]

    def test_integer_coercion(self, registry):
        service_form = registry.get("service_form")
        result = validate_step(service_form, 1, 2, {"price": "10", "duration": "90"})
        assert result.data == {"price": 10, "duration": 90}

    def test_array_must_not_be_empty(self, registry):
        service_form = registry.get("service_form")
        result = validate_step(service_form, 2, 3, {"availability": []})
        assert result.errors[0].message == "The availability field is required."


class TestRowFields:
    def test_valid_rows(self, product_form, attribute_rows, reference_data):
        result = validate_step(product_form, 1, 2, attribute_rows, reference_data=reference_data)
        assert result.is_valid
        assert result.data["attributes"] == attribute_rows["attributes"]

    def test_row_errors_are_keyed_by_index_and_column(self, product_form, reference_data):
        payload = {"attributes": [{"attribute_id": 5, "value_id": 1}, {"attribute_id": 99, "value_id": "red"}]}
        result = validate_step(product_form, 1, 2, payload, reference_data=reference_data)
        assert [e.field for e in result.errors] == ["attributes.1.attribute_id", "attributes.1.value_id"]

    def test_rows_must_be_a_list(self, product_form, reference_data):
        result = validate_step(product_form, 1, 2, {"attributes": "5:1"}, reference_data=reference_data)
        assert result.errors[0].message == "The attributes must be an array."

    def test_undeclared_columns_are_dropped(self, product_form, reference_data):
        payload = {"attributes": [{"attribute_id": 5, "value_id": 1, "price_delta": 3}]}
        result = validate_step(product_form, 1, 2, payload, reference_data=reference_data)
        assert result.data["attributes"] == [{"attribute_id": 5, "value_id": 1}]


class TestFileFields:
    def test_uploads_become_descriptors(self, product_form):
        result = validate_step(product_form, 2, 3, {}, uploads=[_upload()])
        assert result.is_valid
        assert result.data["images"][0]["storage_ref"] == "staging/a"
        assert len(result.uploads) == 1

    def test_missing_required_files(self, product_form):
        result = validate_step(product_form, 2, 3, {})
        assert result.errors[0].message == "The images field is required."

    def test_size_and_type_limits(self, product_form):
        uploads = [
            _upload(name="huge.jpg", size=3 * 1024 * 1024, ref="staging/huge"),
            _upload(name="doc.gif", content_type="image/gif", ref="staging/gif"),
        ]
        result = validate_step(product_form, 2, 3, {}, uploads=uploads)
        assert [e.field for e in result.errors] == ["images.0", "images.1"]
        assert "2048 kilobytes" in result.errors[0].message

    def test_existing_files_count_towards_minimum(self, product_form):
        existing = [SimpleNamespace(field_name="images")]
        result = validate_step(product_form, 2, 3, {}, existing_files=existing)
        assert result.is_valid
        assert "images" not in result.data

    def test_replace_directive_ignores_existing_files(self, product_form):
        existing = [SimpleNamespace(field_name="images")]
        result = validate_step(product_form, 2, 3, {"images__replace": True}, existing_files=existing)
        assert not result.is_valid

    def test_replace_list_is_reported(self, product_form):
        result = validate_step(product_form, 2, 3, {"replace": ["images"]}, uploads=[_upload()])
        assert result.replaced == ("images",)

    def test_uploads_for_undeclared_fields_are_ignored(self, product_form):
        result = validate_step(product_form, 2, 3, {}, uploads=[_upload(), _upload(field="avatar", ref="staging/b")])
        assert [u.field for u in result.uploads] == ["images"]

    def test_single_file_field(self, registry):
        seller_form = registry.get("seller_form")
        uploads = [
            _upload("id_document", "a.pdf", content_type="application/pdf", ref="staging/1"),
            _upload("id_document", "b.pdf", content_type="application/pdf", ref="staging/2"),
        ]
        result = validate_step(seller_form, 1, 2, {"id_type": "passport", "id_number": "X1"}, uploads=uploads)
        assert result.errors[0].message == "The id document must be a single file."
