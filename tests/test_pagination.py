import pytest
from pydantic import ValidationError

from models.dashboard import PageState


@pytest.mark.parametrize("count,expected", [(0, 1), (1, 1), (5, 1), (6, 2), (10, 2), (11, 3)])
def test_total_pages(count, expected):
    assert PageState.create(count, 5).total_pages == expected


@pytest.mark.parametrize("requested,expected", [(0, 1), (-3, 1), (1, 1), (2, 2), (3, 2)])
def test_create_clamps_requested_page(requested, expected):
    assert PageState.create(7, 5, requested).page == expected


def test_out_of_range_page_is_rejected_on_construction():
    with pytest.raises(ValidationError):
        PageState(page=0, page_size=5, total_items=3)
    with pytest.raises(ValidationError):
        PageState(page=2, page_size=5, total_items=3)


def test_navigation_stays_within_bounds():
    first = PageState.create(12, 5)
    assert not first.has_previous
    assert first.previous() == first

    last = first.next().next()
    assert last.page == 3
    assert not last.has_next
    assert last.next() == last
    assert last.previous().page == 2


def test_navigation_returns_new_state():
    first = PageState.create(12, 5)
    second = first.next()
    assert first.page == 1
    assert second.page == 2


def test_slice_returns_items_of_page():
    items = list(range(12))
    state = PageState.create(len(items), 5, 3)
    assert state.slice(items) == [10, 11]
    assert PageState.create(0, 5).slice([]) == []


def test_serializes_as_view_state():
    state = PageState.create(6, 5, 2)
    assert state.model_dump(by_alias=True) == {
        "page": 2,
        "pageSize": 5,
        "totalItems": 6,
        "totalPages": 2,
    }
