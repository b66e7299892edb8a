import pytest

from rigshare.errors import InvalidArgument, Unauthenticated
from rigshare.schemas import BuildPatch, Selection


def _sel(component_id="C3", category="RAM", quantity=1):
    return [Selection(category=category, component_id=component_id, quantity=quantity)]


@pytest.mark.parametrize("page,limit", [(0, 10), (-1, 10), (1, 0), (1, 51)])
def test_list_owned_rejects_bad_bounds(engine, u1, page, limit):
    with pytest.raises(InvalidArgument):
        engine.list_owned(u1, page, limit)


@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 51)])
def test_list_public_rejects_bad_bounds(engine, page, limit):
    with pytest.raises(InvalidArgument):
        engine.list_public(page, limit)


def test_list_owned_requires_principal(engine):
    with pytest.raises(Unauthenticated):
        engine.list_owned(None)


def test_list_owned_orders_by_updated_at_desc(engine, u1, u2):
    first = engine.create(u1, "First", _sel())
    second = engine.create(u1, "Second", _sel())
    engine.create(u2, "Other owner", _sel())
    engine.update(first.id, u1, BuildPatch(description="touched"))

    page = engine.list_owned(u1, 1, 10)

    assert [b.id for b in page.builds] == [first.id, second.id]
    assert page.total == 2
    assert page.total_pages == 1
    assert page.has_next is False
    assert page.has_prev is False


def test_list_owned_includes_private_builds(engine, u1):
    engine.create(u1, "Private one", _sel(), is_public=False)
    assert engine.list_owned(u1).total == 1


def test_list_owned_paginates(engine, u1):
    for i in range(5):
        engine.create(u1, f"Build {i}", _sel())

    page = engine.list_owned(u1, 2, 2)

    assert [b.name for b in page.builds] == ["Build 2", "Build 1"]
    assert page.total == 5
    assert page.total_pages == 3
    assert page.has_next is True
    assert page.has_prev is True


def test_list_public_filters_private(engine, u1, u2):
    engine.create(u1, "Hidden", _sel())
    shown = engine.create(u2, "Shown", _sel(), is_public=True)

    page = engine.list_public()

    assert [b.id for b in page.builds] == [shown.id]
    assert page.total == 1


def test_list_public_sorts_by_total_price(engine, u1):
    engine.create(u1, "Mid", _sel("C3", "RAM", 2), is_public=True)
    engine.create(u1, "Cheap", _sel("C4", "STORAGE"), is_public=True)
    engine.create(u1, "Expensive", _sel("C2", "GPU"), is_public=True)

    asc = engine.list_public(sort_field="totalPrice", sort_order="asc")
    desc = engine.list_public(sort_field="totalPrice", sort_order="desc")

    assert [b.name for b in asc.builds] == ["Cheap", "Mid", "Expensive"]
    assert [b.name for b in desc.builds] == ["Expensive", "Mid", "Cheap"]


def test_list_public_sorts_by_name_and_created_at(engine, u1):
    for name in ("Beta", "Alpha", "Gamma"):
        engine.create(u1, name, _sel(), is_public=True)

    assert [b.name for b in engine.list_public(sort_field="name", sort_order="asc").builds] == [
        "Alpha",
        "Beta",
        "Gamma",
    ]
    assert [b.name for b in engine.list_public().builds] == ["Gamma", "Alpha", "Beta"]


@pytest.mark.parametrize("field,order", [("updatedAt", "desc"), ("price", "asc"), ("name", "up")])
def test_list_public_rejects_bad_sort(engine, field, order):
    with pytest.raises(InvalidArgument):
        engine.list_public(sort_field=field, sort_order=order)


def test_empty_page_meta(engine):
    page = engine.list_public(3, 10)
    assert page.builds == []
    assert page.total == 0
    assert page.total_pages == 0
    assert page.has_next is False
    assert page.has_prev is True


def test_page_beyond_integer_range_is_rejected(engine, u1):
    with pytest.raises(InvalidArgument):
        engine.list_public(10**20, 10)
    with pytest.raises(InvalidArgument):
        engine.list_owned(u1, 10**20, 10)
