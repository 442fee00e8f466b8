"""Qt dialog ``Input`` for interactive counting on a matplotlib figure.

Lines are picked with ``Figure.ginput``; menu choices and the editable count
use ``QInputDialog`` through matplotlib's Qt compatibility layer.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from matplotlib.backends.qt_compat import QtWidgets
from matplotlib.figure import Figure

from cristae_density.analysis import Line
from cristae_density.session import ACCEPT, ADD_LINE, GO_BACK, QUIT, REDRAW, SKIP, Input

CHOICE_LABELS = {
    ACCEPT: "Accept",
    ADD_LINE: "Add line",
    REDRAW: "Redraw",
    SKIP: "Skip region",
    GO_BACK: "Go back",
    QUIT: "Save and quit",
}
DRAW_LINE = "Draw line"
FINISH = "Finish region"


def ensure_app() -> QtWidgets.QApplication:
    app = QtWidgets.QApplication.instance()
    if app is None:
        app = QtWidgets.QApplication([])
    return app


class DialogInput(Input):
    """Collect lines by clicking two points and choices through dialogs."""

    def __init__(self, figure: Figure, parent: Optional[QtWidgets.QWidget] = None, max_count: int = 10000) -> None:
        self.figure = figure
        self.parent = parent
        self.max_count = max_count
        ensure_app()

    def request_line(self, prompt: str) -> Union[Line, str, None]:
        items = [DRAW_LINE, FINISH] + [CHOICE_LABELS[c] for c in (SKIP, GO_BACK, QUIT)]
        item, ok = QtWidgets.QInputDialog.getItem(self.parent, "Cristae count", prompt, items, 0, False)
        if not ok or item == FINISH:
            return None
        if item != DRAW_LINE:
            return _choice_for_label(item)
        points = self.figure.ginput(2, timeout=0)
        if len(points) < 2:
            return None
        (x0, y0), (x1, y1) = points[:2]
        return ((float(x0), float(y0)), (float(x1), float(y1)))

    def request_choice(self, prompt: str, options: Sequence[str], default: str) -> str:
        labels = [CHOICE_LABELS.get(o, o) for o in options]
        current = list(options).index(default) if default in options else 0
        item, ok = QtWidgets.QInputDialog.getItem(self.parent, "Cristae count", prompt, labels, current, False)
        if not ok:
            return REDRAW
        return _choice_for_label(item)

    def request_number(self, prompt: str, default: int) -> Optional[int]:
        value, ok = QtWidgets.QInputDialog.getInt(self.parent, "Cristae count", prompt, int(default), 0, self.max_count, 1)
        return int(value) if ok else None


def _choice_for_label(label: str) -> str:
    for key, text in CHOICE_LABELS.items():
        if text == label:
            return key
    return label
