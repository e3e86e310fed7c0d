import pytest

from conftest import make_image
from design_forge.candidates import CandidateSet, CandidateViewer, FavoritesPanel
from design_forge.exceptions import SelectionError


def make_set(n: int) -> CandidateSet:
    return CandidateSet([make_image(f"c{i}") for i in range(n)])


@pytest.mark.parametrize("length", [1, 2, 3, 4])
@pytest.mark.parametrize("start", [0, 1, 3])
def test_next_cycles_back_after_length_steps(length, start):
    candidates = make_set(length)
    candidates.select(start)
    origin = candidates.selected_index

    for _ in range(length):
        candidates.next()
    assert candidates.selected_index == origin

    for _ in range(length):
        candidates.previous()
    assert candidates.selected_index == origin


def test_next_and_previous_wrap():
    candidates = make_set(3)
    assert candidates.previous() == 2
    assert candidates.next() == 0
    assert candidates.next() == 1


def test_navigation_on_empty_set_is_noop():
    candidates = CandidateSet()
    assert candidates.next() == 0
    assert candidates.previous() == 0
    assert candidates.selected is None


def test_select_out_of_range_is_noop():
    candidates = make_set(3)
    candidates.select(1)

    assert candidates.select(3) is False
    assert candidates.select(-1) is False
    assert candidates.selected_index == 1


def test_replace_resets_index():
    candidates = make_set(3)
    candidates.select(2)
    candidates.replace([make_image("x"), make_image("y")])

    assert candidates.selected_index == 0
    assert len(candidates) == 2


def test_replace_at_touches_only_that_element():
    candidates = make_set(4)
    candidates.select(2)
    before = candidates.images
    edited = make_image("edited")

    candidates.replace_at(2, edited)

    assert candidates.selected_index == 2
    assert candidates[2] == edited
    for i in (0, 1, 3):
        assert candidates[i] == before[i]


def test_replace_at_out_of_range_raises():
    with pytest.raises(SelectionError):
        make_set(2).replace_at(2, make_image("x"))
    with pytest.raises(SelectionError):
        CandidateSet().replace_selected(make_image("x"))


def test_viewer_resets_transform_on_selection_change():
    viewer = CandidateViewer(make_set(3))
    viewer.zoom_in(10, 10)
    assert viewer.transform.scale == pytest.approx(1.5)

    viewer.next()
    assert viewer.transform.is_identity


def test_viewer_resets_transform_on_new_set():
    viewer = CandidateViewer(make_set(2))
    viewer.zoom_in()
    viewer.bind(make_set(2))
    assert viewer.transform.is_identity


def test_viewer_resets_transform_on_in_place_edit():
    candidates = make_set(2)
    viewer = CandidateViewer(candidates)
    viewer.zoom_in()

    candidates.replace_selected(make_image("edited"))
    assert viewer.transform.is_identity


def test_viewer_keeps_transform_when_other_element_is_edited():
    candidates = make_set(3)
    viewer = CandidateViewer(candidates)
    viewer.select(2)
    viewer.zoom_in()

    candidates.replace_at(0, make_image("edited"))

    assert viewer.transform.scale == pytest.approx(1.5)


def test_viewer_resets_when_same_set_is_replaced():
    candidates = make_set(2)
    viewer = CandidateViewer(candidates)
    viewer.zoom_in()

    candidates.replace([make_image("n0"), make_image("n1")])

    assert viewer.transform.is_identity


def test_viewer_keeps_transform_when_select_is_noop():
    viewer = CandidateViewer(make_set(2))
    viewer.zoom_in()
    viewer.select(5)
    assert viewer.transform.scale == pytest.approx(1.5)


def test_zoom_is_clamped():
    viewer = CandidateViewer(make_set(1))
    for _ in range(20):
        viewer.zoom_in()
    assert viewer.transform.scale == 8.0

    for _ in range(20):
        viewer.zoom_out()
    assert viewer.transform.is_identity


def test_wheel_zoom_keeps_point_under_cursor():
    viewer = CandidateViewer(make_set(1))
    viewer.wheel(-1, 100, 50)
    transform = viewer.transform

    assert transform.scale == pytest.approx(1.1)
    # 缩放中心点在变换前后位置不变
    assert (100 - transform.x) / transform.scale == pytest.approx(100)
    assert (50 - transform.y) / transform.scale == pytest.approx(50)


def test_pan_only_when_zoomed():
    viewer = CandidateViewer(make_set(1))
    viewer.pan(10, 10)
    assert viewer.transform.is_identity

    viewer.zoom_in()
    viewer.pan(10, -5)
    assert viewer.transform.x == pytest.approx(10)
    assert viewer.transform.y == pytest.approx(-5)


def test_favorites_suppress_duplicates_by_bytes():
    panel = FavoritesPanel()
    assert panel.add(make_image("a")) is True
    assert panel.add(make_image("a")) is False
    assert panel.add(make_image("b")) is True
    assert len(panel) == 2
