import matplotlib.pyplot as plt
import pytest

from cristae_density.session import ACCEPT, ADD_LINE, CONFIRM_OPTIONS, GO_BACK, QUIT, REDRAW, SKIP

pytestmark = pytest.mark.gui


@pytest.fixture
def dialog_input(monkeypatch):
    from cristae_density.gui_session import DialogInput

    fig = plt.figure()
    ui = DialogInput(fig)
    yield ui
    plt.close(fig)


def _patch_get_item(monkeypatch, item, ok=True):
    from matplotlib.backends.qt_compat import QtWidgets

    monkeypatch.setattr(QtWidgets.QInputDialog, "getItem", staticmethod(lambda *args: (item, ok)))


def test_draw_line_uses_ginput(monkeypatch, dialog_input) -> None:
    from cristae_density.gui_session import DRAW_LINE

    _patch_get_item(monkeypatch, DRAW_LINE)
    monkeypatch.setattr(dialog_input.figure, "ginput", lambda n, timeout: [(1, 2), (30.5, 4)])
    assert dialog_input.request_line("draw") == ((1.0, 2.0), (30.5, 4.0))


def test_incomplete_click_is_no_line(monkeypatch, dialog_input) -> None:
    from cristae_density.gui_session import DRAW_LINE

    _patch_get_item(monkeypatch, DRAW_LINE)
    monkeypatch.setattr(dialog_input.figure, "ginput", lambda n, timeout: [(1, 2)])
    assert dialog_input.request_line("draw") is None


@pytest.mark.parametrize("label,expected", [("Skip region", SKIP), ("Go back", GO_BACK), ("Save and quit", QUIT)])
def test_line_menu_choices(monkeypatch, dialog_input, label, expected) -> None:
    _patch_get_item(monkeypatch, label)
    assert dialog_input.request_line("draw") == expected


def test_finish_and_cancel_give_no_line(monkeypatch, dialog_input) -> None:
    from cristae_density.gui_session import FINISH

    _patch_get_item(monkeypatch, FINISH)
    assert dialog_input.request_line("draw") is None
    _patch_get_item(monkeypatch, "Draw line", ok=False)
    assert dialog_input.request_line("draw") is None


def test_choice_labels_round_trip(monkeypatch, dialog_input) -> None:
    _patch_get_item(monkeypatch, "Add line")
    assert dialog_input.request_choice("confirm", CONFIRM_OPTIONS, ACCEPT) == ADD_LINE


def test_cancelled_choice_redraws(monkeypatch, dialog_input) -> None:
    _patch_get_item(monkeypatch, "Accept", ok=False)
    assert dialog_input.request_choice("confirm", CONFIRM_OPTIONS, ACCEPT) == REDRAW


def test_request_number(monkeypatch, dialog_input) -> None:
    from matplotlib.backends.qt_compat import QtWidgets

    monkeypatch.setattr(QtWidgets.QInputDialog, "getInt", staticmethod(lambda *args: (6, True)))
    assert dialog_input.request_number("count", 2) == 6
    monkeypatch.setattr(QtWidgets.QInputDialog, "getInt", staticmethod(lambda *args: (6, False)))
    assert dialog_input.request_number("count", 2) is None
