"""Tests for form error state and payload schemas."""

import pytest
from pydantic import ValidationError

from venuesync import ClassifiedError, ErrorKind, FormErrors, MutationResult
from venuesync.forms import field_errors_from, partial_errors, validation_error
from venuesync.schemas import (
    CustomerCreate,
    EventCreate,
    InventoryItemCreate,
    InventoryTransactionCreate,
    TransactionCreate,
)


class TestFormErrors:
    """Tests for the form error container."""

    def test_validate_whole_payload(self) -> None:
        """Test that validation replaces the field errors."""
        form = FormErrors(TransactionCreate)
        assert not form.validate({"amount": "abc", "category": "Bar"})
        assert list(form.field_errors) == ["amount"]
        assert form.has_errors

        assert form.validate({"amount": "12.50", "category": "Bar"})
        assert form.field_errors == {}

    def test_validate_field(self) -> None:
        """Test single-field validation as the user types."""
        form = FormErrors(TransactionCreate)
        assert form.validate_field("amount", "-1") is not None
        assert "amount" in form.field_errors

        assert form.validate_field("amount", "5") is None
        assert "amount" not in form.field_errors

    def test_unknown_field_is_valid(self) -> None:
        """Test that fields outside the schema aren't checked."""
        form = FormErrors(TransactionCreate)
        assert form.validate_field("colour", "red") is None

    def test_without_schema(self) -> None:
        """Test a form with no local schema."""
        form = FormErrors()
        assert form.validate({"anything": 1})
        assert form.validate_field("anything", 1) is None

    def test_apply_only_takes_validation_errors(self) -> None:
        """Test that server validation errors land on fields and others don't."""
        form = FormErrors()
        form.apply(ClassifiedError(ErrorKind.SERVER, "boom"))
        assert form.field_errors == {}

        form.apply(validation_error({"email": "Email already registered"}))
        assert form.field_errors == {"email": "Email already registered"}

    def test_clear(self) -> None:
        """Test clearing one field and all fields."""
        form = FormErrors()
        form.apply(validation_error({"a": "x", "b": "y"}))
        form.clear_field("a")
        assert form.field_errors == {"b": "y"}
        form.clear_all()
        assert not form.has_errors

    async def test_track_submission(self) -> None:
        """Test that tracking sets is_validating and applies the result."""
        form = FormErrors()
        states = []

        async def submit() -> MutationResult:
            states.append(form.is_validating)
            return MutationResult(False, error=validation_error({"sku": "Duplicate SKU"}))

        result = await form.track(submit())

        assert states == [True]
        assert not form.is_validating
        assert not result.success
        assert form.field_errors == {"sku": "Duplicate SKU"}

    async def test_track_resets_on_exception(self) -> None:
        """Test that is_validating is cleared when the submission raises."""
        form = FormErrors()

        async def submit() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await form.track(submit())
        assert not form.is_validating


class TestHelpers:
    """Tests for error helpers."""

    def test_field_errors_from_nested(self) -> None:
        """Test that nested locations are dotted."""
        with pytest.raises(ValidationError) as exc_info:
            CustomerCreate.model_validate(
                {"first_name": "Ada", "last_name": "L", "email": "a@b.co", "tags": [1]}
            )
        assert list(field_errors_from(exc_info.value)) == ["tags.0"]

    def test_partial_errors(self) -> None:
        """Test that missing required fields are ignored for partial changes."""
        assert partial_errors(InventoryItemCreate, {"stock": 3}) == {}
        assert set(partial_errors(InventoryItemCreate, {"stock": -3})) == {"stock"}

    def test_validation_error(self) -> None:
        """Test building a validation error."""
        error = validation_error({"amount": "Required"})
        assert error.is_validation
        assert error.field_errors == {"amount": "Required"}


class TestSchemas:
    """Tests for payload schemas."""

    def test_event_times(self) -> None:
        """Test that events must end after they start."""
        form = FormErrors(EventCreate)
        ok = form.validate(
            {
                "title": "Jazz Night",
                "date": "2026-11-02",
                "start_time": "19:00",
                "end_time": "23:00",
                "capacity": 120,
            }
        )
        assert ok

        assert not form.validate(
            {
                "title": "Jazz Night",
                "date": "2026-11-02",
                "start_time": "19:00",
                "end_time": "18:00",
                "capacity": 120,
            }
        )
        assert "End time must be after start time" in form.field_errors["end_time"]

    def test_transaction_defaults(self) -> None:
        """Test transaction defaults and amount precision."""
        txn = TransactionCreate.model_validate({"amount": "50.00", "category": "Bar"})
        assert txn.model_dump(mode="json", exclude_none=True) == {
            "amount": "50.00",
            "category": "Bar",
            "type": "income",
            "currency": "USD",
            "tags": [],
        }
        with pytest.raises(ValidationError):
            TransactionCreate.model_validate({"amount": "1.005", "category": "Bar"})

    def test_stock_movement_quantity(self) -> None:
        """Test that stock movements need a non-zero quantity."""
        with pytest.raises(ValidationError, match="Quantity must not be zero"):
            InventoryTransactionCreate.model_validate(
                {"item_id": "item-1", "type": "out", "quantity": 0}
            )

    def test_extra_fields_rejected(self) -> None:
        """Test that unknown fields are rejected."""
        with pytest.raises(ValidationError):
            InventoryItemCreate.model_validate({"name": "Ice", "colour": "clear"})
