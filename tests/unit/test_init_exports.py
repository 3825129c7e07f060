from __future__ import annotations

import pytest

import tablestore_py as tablestore


def test_init_exposes_lazy_exports_via_getattr() -> None:
    assert tablestore._normalize_repo_version("1.2.3") == "1.2.3"
    assert tablestore._normalize_repo_version("1.2.3-rc.4") == "1.2.3rc4"

    assert callable(tablestore.TableStoreClient)
    assert callable(tablestore.ClientConfig)
    assert callable(tablestore.create_client)
    assert callable(tablestore.create_dynamodb_client)
    assert callable(tablestore.Boto3RemoteStore)
    assert callable(tablestore.validate_expression)
    assert tablestore.MaxExpressionLength > 0


def test_every_public_name_resolves() -> None:
    for name in tablestore.__all__:
        assert getattr(tablestore, name) is not None


def test_unknown_attribute_raises() -> None:
    with pytest.raises(AttributeError):
        tablestore.not_a_real_export  # noqa: B018
