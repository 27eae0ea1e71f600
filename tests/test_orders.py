import pytest

import orders as orders_module
from errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def buyer(make_user):
    return make_user("buyer1")


@pytest.fixture
def seller(make_user):
    return make_user("seller1", role="seller")


@pytest.fixture
def address(buyer, make_address):
    return make_address(buyer["id"])


@pytest.fixture
def p1(seller, make_product):
    return make_product(seller["id"], name="P1", price=10.00, stock=5)


@pytest.fixture
def p2(seller, make_product):
    return make_product(seller["id"], name="P2", price=20.00, stock=3)


@pytest.fixture
def place(services, buyer, seller, address):
    def _place(*lines):
        items = [{"product_id": product["id"], "quantity": quantity} for product, quantity in lines]
        return services.orders.create_order(buyer["id"], seller["id"], items, address["id"])
    return _place


def stock_of(services, product):
    return services.catalog.get_product(product["id"])["stock"]


def test_create_order_scenario(services, place, p1, p2):
    order = place((p1, 2), (p2, 1))

    assert order["total_amount"] == 40.00
    assert order["status"] == "IN_PROGRESS"
    assert order["payment_status"] == "PENDING"
    assert order["order_date"] is not None
    assert order["delivery_date"] is None
    assert stock_of(services, p1) == 3
    assert stock_of(services, p2) == 2


def test_order_captures_unit_price(services, place, seller, p1):
    order = place((p1, 3))
    services.catalog.update_product(p1["id"], seller["id"], {"price": 99.0})

    stored = services.orders.get_order(order["id"], seller["id"])
    assert stored["items"][0]["price"] == 10.0
    assert stored["items"][0]["name"] == "P1"
    assert stored["total_amount"] == 30.0


def test_total_is_exact_for_cents(services, place, seller, make_product):
    cheap = make_product(seller["id"], name="Gum", price=0.1, stock=10)
    odd = make_product(seller["id"], name="Pen", price=19.99, stock=10)

    order = place((cheap, 3), (odd, 3))

    assert order["total_amount"] == 60.27


def test_order_appears_in_buyer_lists(services, place, buyer, seller, p1):
    first = place((p1, 1))
    second = place((p1, 1))

    assert [o["id"] for o in services.orders.get_user_orders(buyer["id"])] == [first["id"], second["id"]]
    assert services.users.get_user(buyer["id"])["orders"] == [first["id"], second["id"]]
    assert [o["id"] for o in services.orders.get_seller_orders(seller["id"])] == [first["id"], second["id"]]
    assert services.orders.get_user_orders(seller["id"]) == []


@pytest.mark.parametrize("missing", ["buyer_id", "seller_id", "items", "shipping_address_id"])
def test_create_order_names_missing_field(services, buyer, seller, address, p1, missing):
    args = {
        "buyer_id": buyer["id"],
        "seller_id": seller["id"],
        "items": [{"product_id": p1["id"], "quantity": 1}],
        "shipping_address_id": address["id"],
    }
    args[missing] = [] if missing == "items" else None

    with pytest.raises(ValidationError, match=f"{missing} is required"):
        services.orders.create_order(**args)


def test_create_order_rejects_bad_quantity(place, p1):
    with pytest.raises(ValidationError):
        place((p1, 0))


def test_create_order_unknown_product(services, place, p1):
    ghost = {"id": "64b7f0000000000000000000"}

    with pytest.raises(NotFoundError, match="product 64b7f0000000000000000000 not found"):
        place((p1, 2), (ghost, 1))
    assert stock_of(services, p1) == 5


def test_insufficient_stock_leaves_no_mutation(services, place, p1, p2):
    with pytest.raises(InsufficientStockError, match="P2"):
        place((p1, 2), (p2, 4))

    assert stock_of(services, p1) == 5
    assert stock_of(services, p2) == 3
    assert services.db["order"].count_documents({}) == 0


def test_failed_insert_restores_stock(services, place, p1, p2, monkeypatch):
    def broken_insert(*args, **kwargs):
        raise RuntimeError("write failed")

    monkeypatch.setattr(orders_module, "create_document", broken_insert)

    with pytest.raises(RuntimeError):
        place((p1, 2), (p2, 1))
    assert stock_of(services, p1) == 5
    assert stock_of(services, p2) == 3


def test_second_order_cannot_oversell(services, place, p2):
    place((p2, 2))
    with pytest.raises(InsufficientStockError):
        place((p2, 2))
    assert stock_of(services, p2) == 1


def test_shipping_address_must_belong_to_buyer(services, buyer, seller, p1, make_address):
    foreign = make_address(seller["id"])
    with pytest.raises(ValidationError, match="does not belong"):
        services.orders.create_order(buyer["id"], seller["id"], [{"product_id": p1["id"], "quantity": 1}],
                                     foreign["id"])


def test_pay_then_complete_then_return(services, place, buyer, seller, p1):
    order = place((p1, 1))

    paid = services.orders.pay_order(order["id"], buyer["id"])
    assert paid["payment_status"] == "PAID"

    completed = services.orders.complete_order(order["id"], seller["id"])
    assert completed["status"] == "COMPLETED"
    assert completed["delivery_date"] is not None

    returned = services.orders.return_order(order["id"], buyer["id"], "Wrong size")
    assert returned["status"] == "RETURNED"
    assert returned["return_reason"] == "Wrong size"


def test_pay_order_is_buyer_only(services, place, seller, p1):
    order = place((p1, 1))
    with pytest.raises(AuthorizationError):
        services.orders.pay_order(order["id"], seller["id"])


def test_pay_order_twice_conflicts(services, place, buyer, p1):
    order = place((p1, 1))
    services.orders.pay_order(order["id"], buyer["id"])
    with pytest.raises(ConflictError):
        services.orders.pay_order(order["id"], buyer["id"])


def test_pay_missing_order(services, buyer):
    with pytest.raises(NotFoundError):
        services.orders.pay_order("64b7f0000000000000000000", buyer["id"])


def test_complete_requires_payment(services, place, seller, p1):
    order = place((p1, 1))
    with pytest.raises(ConflictError, match="paid"):
        services.orders.complete_order(order["id"], seller["id"])


def test_return_requires_completed(services, place, buyer, p1):
    order = place((p1, 1))
    with pytest.raises(ConflictError):
        services.orders.return_order(order["id"], buyer["id"], "Changed my mind")


def test_return_requires_reason(services, place, buyer, seller, p1):
    order = place((p1, 1))
    services.orders.pay_order(order["id"], buyer["id"])
    services.orders.complete_order(order["id"], buyer["id"])

    with pytest.raises(ValidationError):
        services.orders.return_order(order["id"], buyer["id"], "  ")


def test_cancel_restores_stock(services, place, buyer, p1, p2):
    order = place((p1, 2), (p2, 1))

    canceled = services.orders.cancel_order(order["id"], buyer["id"])

    assert canceled["status"] == "CANCELED"
    assert stock_of(services, p1) == 5
    assert stock_of(services, p2) == 3
    with pytest.raises(ConflictError):
        services.orders.cancel_order(order["id"], buyer["id"])


def test_cannot_cancel_paid_order(services, place, buyer, p1):
    order = place((p1, 1))
    services.orders.pay_order(order["id"], buyer["id"])
    with pytest.raises(ConflictError):
        services.orders.cancel_order(order["id"], buyer["id"])


def test_update_status_is_seller_only(services, place, make_user, p1):
    order = place((p1, 1))
    other_seller = make_user("seller2", role="seller")

    with pytest.raises(AuthorizationError):
        services.orders.update_order_status(order["id"], other_seller["id"], "COMPLETED")


def test_update_status_overrides_transition_rules(services, place, seller, p1):
    order = place((p1, 1))

    updated = services.orders.update_order_status(order["id"], seller["id"], "RETURNED")

    assert updated["status"] == "RETURNED"
    assert updated["payment_status"] == "PENDING"


def test_update_status_rejects_unknown_value(services, place, seller, p1):
    order = place((p1, 1))
    with pytest.raises(ValidationError, match="Invalid status"):
        services.orders.update_order_status(order["id"], seller["id"], "SHIPPED")


def test_get_order_is_limited_to_parties(services, place, make_user, p1):
    order = place((p1, 1))
    with pytest.raises(AuthorizationError):
        services.orders.get_order(order["id"], make_user("nosy")["id"])


def test_delete_order(services, place, buyer, p1):
    order = place((p1, 1))
    services.orders.delete_order(order["id"], buyer["id"])

    with pytest.raises(NotFoundError):
        services.orders.get_order(order["id"], buyer["id"])
    assert services.users.get_user(buyer["id"])["orders"] == []


def test_create_order_rejects_boolean_quantity(place, p1):
    with pytest.raises(ValidationError, match="Invalid quantity"):
        place((p1, True))


def test_cancel_after_override_does_not_restore_twice(services, place, buyer, seller, p1):
    order = place((p1, 2))
    services.orders.cancel_order(order["id"], buyer["id"])
    services.orders.update_order_status(order["id"], seller["id"], "IN_PROGRESS")

    canceled = services.orders.cancel_order(order["id"], buyer["id"])

    assert canceled["status"] == "CANCELED"
    assert canceled["stock_released"] is True
    assert stock_of(services, p1) == 5


def test_cancel_loses_race_to_payment(services, place, buyer, p1, monkeypatch):
    order = place((p1, 2))
    stale = services.orders._load(order["id"])
    services.orders.pay_order(order["id"], buyer["id"])
    monkeypatch.setattr(services.orders, "_load", lambda order_id: stale)

    with pytest.raises(ConflictError):
        services.orders.cancel_order(order["id"], buyer["id"])
    assert stock_of(services, p1) == 3
