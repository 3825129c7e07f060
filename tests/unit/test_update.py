from __future__ import annotations

import pytest

from tablestore_py import AttributeValue, UpdateExpression, ValidationError


def test_book_update_builds_add_set_remove() -> None:
    compiled = (
        UpdateExpression()
        .add("Authors", {"Author YY", "Author ZZ"})
        .decrement("Price", 1)
        .remove("ISBN")
        .build()
    )

    assert compiled.expression == "ADD #u0 :u0 SET #u1 = #u1 - :u1 REMOVE #u2"
    assert compiled.names == {"#u0": "Authors", "#u1": "Price", "#u2": "ISBN"}
    assert compiled.values == {
        ":u0": AttributeValue.string_set(["Author YY", "Author ZZ"]),
        ":u1": AttributeValue.number_value(1),
    }


def test_actions_group_under_one_keyword() -> None:
    compiled = (
        UpdateExpression()
        .set("Title", "New")
        .remove("ISBN")
        .increment("Views")
        .set_if_not_exists("CreatedAt", "2024-01-01")
        .append_to_list("History", ["edited"])
        .build()
    )

    assert compiled.expression == (
        "SET #u0 = :u0, #u2 = #u2 + :u1, #u3 = if_not_exists(#u3, :u2), "
        "#u4 = list_append(#u4, :u3) REMOVE #u1"
    )
    assert compiled.values[":u3"] == AttributeValue.list_value([AttributeValue.string_value("edited")])


def test_repeated_attribute_reuses_its_alias() -> None:
    compiled = UpdateExpression().set("Price", 1).add("Price", 2).build()

    assert compiled.names == {"#u0": "Price"}
    assert compiled.expression == "SET #u0 = :u0 ADD #u0 :u1"


def test_delete_removes_members_from_a_set() -> None:
    compiled = UpdateExpression().delete("Authors", {"Author YY"}).build()

    assert compiled.expression == "DELETE #u0 :u0"
    assert compiled.values[":u0"].as_string_set() == {"Author YY"}


def test_add_and_delete_validate_operand_variants() -> None:
    with pytest.raises(ValidationError, match="ADD requires"):
        UpdateExpression().add("Title", "x")
    with pytest.raises(ValidationError, match="DELETE requires"):
        UpdateExpression().delete("Price", 1)


def test_empty_update_is_rejected() -> None:
    update = UpdateExpression()

    assert not update
    with pytest.raises(ValidationError, match="no updates"):
        update.build()
