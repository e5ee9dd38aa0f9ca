from decimal import Decimal

import pytest

from storefront.cart.catalog import InMemoryCatalog, ProductInfo, VariantInfo
from storefront.cart.errors import InvalidQuantityError, OutOfStockError, ProductUnavailableError
from storefront.cart.models import Cart, CartItem, CartMutation, line_key
from storefront.cart.store import CartStore
from storefront.common import StorefrontSettings


def _catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        [
            ProductInfo("A", Decimal("10.00"), stock=5, name="Adire Scarf"),
            ProductInfo("B", Decimal("4.50"), stock=10),
            ProductInfo(
                "SHOE",
                Decimal("60.00"),
                variants={
                    "42": VariantInfo("42", stock=2),
                    "43": VariantInfo("43", price=Decimal("65.00"), stock=0),
                },
            ),
            ProductInfo("UNTRACKED", Decimal("1.25")),
        ]
    )


def _store(**kwargs) -> CartStore:
    kwargs.setdefault("catalog", _catalog())
    return CartStore("cart-1", **kwargs)


def _assert_totals_consistent(cart: Cart) -> None:
    assert cart.item_count == sum(item.quantity for item in cart.items)
    assert cart.subtotal == sum((item.unit_price * item.quantity for item in cart.items), Decimal("0"))


def test_add_item_uses_catalog_price_and_accumulates() -> None:
    store = _store()
    store.add_item("A", quantity=2)
    cart = store.add_item("A", quantity=1)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.subtotal == Decimal("30.00")
    _assert_totals_consistent(cart)


def test_totals_track_every_mutation() -> None:
    store = _store()
    snapshots = [
        store.add_item("A", quantity=2),
        store.add_item("B", quantity=3),
        store.add_item("SHOE", "42"),
        store.update_quantity(("B", None), 1),
        store.remove_item("A"),
        store.add_item("UNTRACKED", quantity=7),
    ]
    for snapshot in snapshots:
        _assert_totals_consistent(snapshot)
    assert snapshots[-1].item_count == 9
    assert snapshots[-1].subtotal == Decimal("4.50") + Decimal("60.00") + Decimal("8.75")


def test_variant_price_overrides_product_price() -> None:
    catalog = _catalog()
    catalog.put(ProductInfo("HAT", Decimal("20.00"), variants={"red": VariantInfo("red", price=Decimal("22.00"))}))
    store = _store(catalog=catalog)

    cart = store.add_item("HAT", "red")

    assert cart.get(line_key("HAT", "red")).unit_price == Decimal("22.00")


def test_add_unknown_variant_is_rejected() -> None:
    store = _store()
    with pytest.raises(ProductUnavailableError):
        store.add_item("SHOE", "99")
    assert store.get_snapshot().is_empty


def test_add_without_catalog_price_requires_explicit_price() -> None:
    store = CartStore("cart-2")
    with pytest.raises(ProductUnavailableError):
        store.add_item("X")

    cart = store.add_item("X", quantity=2, unit_price="3.10")
    assert cart.subtotal == Decimal("6.20")


def test_add_beyond_stock_raises_and_leaves_cart_unchanged() -> None:
    store = _store()
    store.add_item("A", quantity=4)

    with pytest.raises(OutOfStockError) as exc_info:
        store.add_item("A", quantity=2)

    assert exc_info.value.available == 5
    assert exc_info.value.requested == 6
    assert store.get_snapshot().items[0].quantity == 4


def test_add_sold_out_variant_raises() -> None:
    store = _store()
    with pytest.raises(OutOfStockError):
        store.add_item("SHOE", "43")


@pytest.mark.parametrize("quantity", [0, -1, 100, 2.5, "3", True])
def test_add_rejects_invalid_quantities(quantity) -> None:
    store = _store()
    with pytest.raises(InvalidQuantityError):
        store.add_item("UNTRACKED", quantity=quantity)


def test_add_rejects_total_above_maximum() -> None:
    store = _store(max_quantity=5)
    store.add_item("UNTRACKED", quantity=4)
    with pytest.raises(InvalidQuantityError):
        store.add_item("UNTRACKED", quantity=2)


def test_add_rejects_line_below_minimum_quantity() -> None:
    store = _store(min_quantity=2)
    with pytest.raises(InvalidQuantityError):
        store.add_item("B", quantity=1)
    assert store.get_snapshot().is_empty

    cart = store.add_item("B", quantity=2)
    assert cart.get(line_key("B")).quantity == 2
    assert store.add_item("B", quantity=1).get(line_key("B")).quantity == 3


def test_update_quantity_clamps_to_stock() -> None:
    store = _store()
    store.add_item("A", quantity=1)

    cart = store.update_quantity("A", 50)

    assert cart.items[0].quantity == 5


def test_update_quantity_zero_is_equivalent_to_remove() -> None:
    updated = _store()
    updated.add_item("A", quantity=2)
    updated.add_item("B")
    removed = _store()
    removed.add_item("A", quantity=2)
    removed.add_item("B")

    via_update = updated.update_quantity("A", 0)
    via_remove = removed.remove_item("A")

    assert [item.key for item in via_update.items] == [item.key for item in via_remove.items]
    assert via_update.subtotal == via_remove.subtotal


def test_update_quantity_rejects_garbage() -> None:
    store = _store()
    store.add_item("A")
    with pytest.raises(InvalidQuantityError):
        store.update_quantity("A", "lots")
    with pytest.raises(InvalidQuantityError):
        store.update_quantity("A", -2)


def test_update_unknown_line_is_a_no_op() -> None:
    store = _store()
    mutations: list[CartMutation] = []
    store.mutations.subscribe(mutations.append)

    cart = store.update_quantity("B", 3)

    assert cart.is_empty
    assert mutations == []


def test_update_line_whose_stock_vanished_raises() -> None:
    catalog = _catalog()
    store = _store(catalog=catalog)
    store.add_item("A", quantity=2)
    catalog.put(ProductInfo("A", Decimal("10.00"), stock=0))

    with pytest.raises(OutOfStockError):
        store.update_quantity("A", 1)


def test_remove_is_idempotent() -> None:
    store = _store()
    store.add_item("A", quantity=2)
    mutations: list[CartMutation] = []
    store.mutations.subscribe(mutations.append)

    first = store.remove_item("A")
    second = store.remove_item("A")

    assert first.is_empty and second.is_empty
    assert [mutation.kind for mutation in mutations] == ["remove"]


def test_clear_only_emits_for_non_empty_cart() -> None:
    store = _store()
    mutations: list[CartMutation] = []
    store.mutations.subscribe(mutations.append)

    store.clear()
    store.add_item("B", quantity=2)
    store.clear()

    assert [mutation.kind for mutation in mutations] == ["set", "clear"]
    assert store.get_snapshot().item_count == 0


def test_subscribers_receive_snapshot_after_each_change() -> None:
    store = _store()
    seen: list[Cart] = []
    unsubscribe = store.subscribe(seen.append)

    store.add_item("A")
    store.add_item("B", quantity=2)
    unsubscribe()
    store.clear()

    assert [cart.item_count for cart in seen] == [1, 3]


def test_failing_listener_does_not_break_other_listeners() -> None:
    store = _store()
    seen: list[Cart] = []

    def _broken(cart: Cart) -> None:
        raise RuntimeError("boom")

    store.subscribe(_broken)
    store.subscribe(seen.append)

    store.add_item("A")

    assert len(seen) == 1


def test_set_mutations_carry_absolute_quantity() -> None:
    store = _store()
    mutations: list[CartMutation] = []
    store.mutations.subscribe(mutations.append)

    store.add_item("A", quantity=2)
    store.add_item("A", quantity=1)
    store.update_quantity("A", 4)

    assert [mutation.quantity for mutation in mutations] == [2, 3, 4]
    assert [mutation.sequence for mutation in mutations] == sorted(mutation.sequence for mutation in mutations)


def test_merge_server_wins_on_conflict() -> None:
    store = _store()
    store.add_item("A", quantity=2)
    server = Cart(
        id="customer-cart",
        items=(
            CartItem("A", 1, Decimal("10.00")),
            CartItem("B", 3, Decimal("4.50")),
        ),
    )

    merged = store.merge_server_cart(server)

    assert merged.id == "customer-cart"
    assert [(item.product_id, item.quantity) for item in merged.items] == [("A", 1), ("B", 3)]
    _assert_totals_consistent(merged)


def test_merge_appends_guest_lines_and_clamps_to_stock() -> None:
    store = _store()
    store.add_item("UNTRACKED", quantity=3)
    store.add_item("SHOE", "42", quantity=2)
    mutations: list[CartMutation] = []
    store.mutations.subscribe(mutations.append)
    server = Cart(
        id="customer-cart",
        items=(
            CartItem("A", 9, Decimal("10.00")),
            CartItem("SHOE", 1, Decimal("65.00"), variant_id="43"),
        ),
    )

    merged = store.merge_server_cart(server)

    assert [(str(item.key), item.quantity) for item in merged.items] == [
        ("A", 5),
        ("UNTRACKED", 3),
        ("SHOE/42", 2),
    ]
    kinds = {(mutation.kind, str(mutation.key)) for mutation in mutations}
    assert ("set", "A") in kinds
    assert ("remove", "SHOE/43") in kinds
    assert ("set", "UNTRACKED") in kinds
    assert all(mutation.cart_id == "customer-cart" for mutation in mutations)


def test_reconcile_adopts_server_values_except_pending_lines() -> None:
    store = _store()
    store.add_item("A", quantity=2)
    store.add_item("B", quantity=1)
    store.add_item("UNTRACKED", quantity=1)
    server = Cart(
        id="cart-1",
        items=(
            CartItem("A", 3, Decimal("9.00")),
            CartItem("B", 5, Decimal("4.50")),
            CartItem("C", 1, Decimal("2.00")),
        ),
    )
    mutations: list[CartMutation] = []
    store.mutations.subscribe(mutations.append)

    cart = store.reconcile(server, pending=[line_key("B")])

    assert [(str(item.key), item.quantity) for item in cart.items] == [("A", 3), ("B", 1), ("C", 1)]
    assert cart.get(line_key("A")).unit_price == Decimal("9.00")
    assert mutations == []
    _assert_totals_consistent(cart)


def test_reconcile_ignores_foreign_cart() -> None:
    store = _store()
    store.add_item("A")

    cart = store.reconcile(Cart(id="other", items=()))

    assert cart.item_count == 1


def test_from_settings_applies_quantity_bounds() -> None:
    settings = StorefrontSettings(max_quantity=3, default_currency="EUR")
    store = CartStore.from_settings("cart-9", settings)

    assert store.currency == "EUR"
    with pytest.raises(InvalidQuantityError):
        store.add_item("X", quantity=4, unit_price="1.00")


def test_from_cart_restores_without_emitting() -> None:
    snapshot = Cart(id="guest", items=(CartItem("B", 2, Decimal("4.50")),), currency="USD")
    store = CartStore.from_cart(snapshot, catalog=_catalog())
    seen: list[Cart] = []
    store.subscribe(seen.append)

    assert store.get_snapshot().subtotal == Decimal("9.00")
    assert seen == []
